"""Lorebook entry schemas."""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ConfigDict, model_validator


class EntryType(str, Enum):
    CHARACTER = "character"
    LOCATION = "location"
    ITEM = "item"
    FACTION = "faction"
    CONCEPT = "concept"
    EVENT = "event"


class InjectionMode(str, Enum):
    ALWAYS = "always"
    KEYWORD = "keyword"
    RELEVANT = "relevant"
    NEVER = "never"


class EntryOrigin(str, Enum):
    """Where an entry came from: the persisted lorebook or the live world tracker."""

    LOREBOOK = "lorebook"
    LIVE = "live"


class InjectionPolicy(BaseModel):
    """Author-defined rules for when an entry reaches the prompt."""

    mode: InjectionMode = InjectionMode.KEYWORD
    keywords: List[str] = Field(default_factory=list)
    priority: int = Field(0, description="Tie-break within a tier; higher wins")


# ==================== Type-specific state ====================


class CharacterState(BaseModel):
    type: Literal["character"] = "character"
    is_present: bool = False
    last_seen_location: Optional[str] = None
    current_disposition: Optional[str] = None
    relationship_level: int = 0
    relationship_status: str = "unknown"
    known_facts: List[str] = Field(default_factory=list)
    revealed_secrets: List[str] = Field(default_factory=list)


class LocationState(BaseModel):
    type: Literal["location"] = "location"
    is_current_location: bool = False
    visit_count: int = Field(0, ge=0)
    present_characters: List[str] = Field(default_factory=list)
    present_items: List[str] = Field(default_factory=list)


class ItemState(BaseModel):
    type: Literal["item"] = "item"
    in_inventory: bool = False
    current_location: Optional[str] = None
    condition: Optional[str] = None


class FactionState(BaseModel):
    type: Literal["faction"] = "faction"
    status: Literal["allied", "hostile", "neutral", "unknown"] = "unknown"
    standing: int = 0


class ConceptState(BaseModel):
    type: Literal["concept"] = "concept"
    revealed: bool = True
    complexity: Optional[str] = None


class EventState(BaseModel):
    type: Literal["event"] = "event"
    occurred: bool = True
    in_story_time: Optional[str] = None
    consequences: List[str] = Field(default_factory=list)


EntryState = Annotated[
    Union[CharacterState, LocationState, ItemState, FactionState, ConceptState, EventState],
    Field(discriminator="type"),
]


class Entry(BaseModel):
    """
    A lorebook entry or a live tracked entity rendered as one.

    Exactly one state shape is allowed per entry type; a character entry
    can only carry a CharacterState, and so on.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Entry identifier")
    story_id: Optional[str] = None
    branch_id: Optional[str] = Field(None, description="Narrative branch owning this copy")
    type: EntryType
    name: str = Field(..., min_length=1)
    aliases: List[str] = Field(default_factory=list)
    description: str = ""
    hidden_info: Optional[str] = Field(
        None, description="Facts not yet known to the protagonist"
    )
    state: Optional[EntryState] = None
    injection: InjectionPolicy = Field(default_factory=InjectionPolicy)
    first_mentioned: Optional[int] = None
    last_mentioned: Optional[int] = None
    mention_count: int = Field(0, ge=0)
    created_by: Literal["user", "ai", "import"] = "user"
    origin: EntryOrigin = EntryOrigin.LOREBOOK

    @model_validator(mode="after")
    def state_matches_type(self) -> "Entry":
        if self.state is not None and self.state.type != self.type.value:
            raise ValueError(
                f"state of type '{self.state.type}' does not match entry type '{self.type.value}'"
            )
        return self

    @property
    def is_live(self) -> bool:
        return self.origin == EntryOrigin.LIVE

    @property
    def is_never_injected(self) -> bool:
        return self.injection.mode == InjectionMode.NEVER

    def match_terms(self) -> List[str]:
        """Name, aliases and configured keywords, in that order."""
        return [self.name, *self.aliases, *self.injection.keywords]
