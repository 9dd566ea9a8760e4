"""Transcript and live world state schemas."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ConfigDict


class StoryEntry(BaseModel):
    """One turn of the transcript: a user action or a piece of narration."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Transcript entry ID")
    story_id: Optional[str] = None
    branch_id: Optional[str] = None
    type: Literal["user_action", "narration", "system", "retry"] = "narration"
    content: str = ""
    position: int = Field(0, ge=0, description="Position in the branch transcript")
    token_count: Optional[int] = Field(
        None, ge=0, description="Token count stored at generation time, if known"
    )
    time_start: Optional[str] = Field(None, description="In-fiction clock at turn start")
    time_end: Optional[str] = Field(None, description="In-fiction clock at turn end")

    @property
    def is_user_action(self) -> bool:
        return self.type == "user_action"

    @property
    def tag(self) -> str:
        return "ACTION" if self.is_user_action else "NARRATION"


class Character(BaseModel):
    """A tracked character in the live world state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    story_id: Optional[str] = None
    branch_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    relationship: Optional[str] = None
    traits: List[str] = Field(default_factory=list)
    status: Literal["active", "inactive", "deceased"] = "active"


class Location(BaseModel):
    """A tracked location in the live world state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    story_id: Optional[str] = None
    branch_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    visited: bool = False
    current: bool = False
    connections: List[str] = Field(default_factory=list)


class Item(BaseModel):
    """A tracked item in the live world state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    story_id: Optional[str] = None
    branch_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    quantity: int = Field(1, ge=0)
    equipped: bool = False
    location: str = Field("inventory", description="'inventory' when carried by the protagonist")

    @property
    def in_inventory(self) -> bool:
        return self.location == "inventory"


class LiveWorldState(BaseModel):
    """The authoritative tracked entities for the current turn."""

    characters: List[Character] = Field(default_factory=list)
    locations: List[Location] = Field(default_factory=list)
    items: List[Item] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.characters or self.locations or self.items)
