"""Models for the Aula profile data returned at login."""

from pydantic import BaseModel, ConfigDict, Field


class AulaModel(BaseModel):
    """Base model with common configuration.

    All Aula API models should inherit from this class to get:
    - populate_by_name: Allow both alias and field name in input
    - extra="ignore": Ignore unknown fields from API responses
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )


class Institution(AulaModel):
    """Institution profile (school or daycare) linked to a login."""

    id: int | None = Field(default=None, alias="id")
    institution_code: str | None = Field(default=None, alias="institutionCode")
    institution_name: str | None = Field(default=None, alias="institutionName")


class Child(AulaModel):
    """A child attached to a guardian profile."""

    id: int = Field(alias="id")
    profile_id: int | None = Field(default=None, alias="profileId")
    name: str = Field(default="", alias="name")
    institution_profile: Institution | None = Field(default=None, alias="institutionProfile")

    @property
    def institution_name(self) -> str | None:
        return self.institution_profile.institution_name if self.institution_profile else None


class Profile(AulaModel):
    """Guardian profile from profiles.getProfilesByLogin."""

    profile_id: int | None = Field(default=None, alias="profileId")
    display_name: str | None = Field(default=None, alias="displayName")
    portal_role: str | None = Field(default=None, alias="portalRole")
    children: list[Child] = Field(default_factory=list, alias="children")
    institution_profiles: list[Institution] = Field(
        default_factory=list, alias="institutionProfiles"
    )
