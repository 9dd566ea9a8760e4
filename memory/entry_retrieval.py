"""
Tiered lorebook entry retrieval.

Decides which lorebook entries and live tracked entities are worth the
narrator's token budget this turn:

- Tier 1: live world state (active characters, current location, carried
  items), always-inject entries, legacy state flags, and sticky entries that
  Tier 2/3 picked recently.
- Tier 2: name, alias and keyword matches against the user's input and the
  recent transcript.
- Tier 3: whatever is left, judged by an LLM. Best effort: any failure
  yields an empty tier, never an exception.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from config.retrieval import EntryRetrievalConfig
from core import get_logger, JudgeError, JudgeResponseParseError
from memory.activation import ActivationTracker
from prompts import ENTRY_SELECTION_SYSTEM_PROMPT, ENTRY_SELECTION_PROMPT
from schemas import (
    Entry,
    EntryType,
    EntryOrigin,
    InjectionMode,
    InjectionPolicy,
    CharacterState,
    LocationState,
    ItemState,
    FactionState,
    Character,
    Location,
    Item,
    LiveWorldState,
    StoryEntry,
    RetrievedEntry,
    EntryRetrievalResult,
)
from utils.judge import JudgeClient, call_judge
from utils.json_parsing import parse_index_selection

logger = get_logger(__name__)


# Live world state always outranks static lore.
LIVE_LOCATION_PRIORITY = 100
LIVE_CHARACTER_PRIORITY = 95
LIVE_ITEM_PRIORITY = 80

KEYWORD_BASE_PRIORITY = 70
JUDGE_BASE_PRIORITY = 50

STICKY_FLOOR = 60
STICKY_RANGE = 20

TIER3_DESCRIPTION_CHARS = 250
TIER3_TRANSCRIPT_CHARS = 400


@dataclass(frozen=True)
class Tier1Rule:
    """One way a lorebook entry qualifies for Tier 1 without stickiness."""

    priority: int
    applies: Callable[[Entry], bool]
    reason: Callable[[Entry], str]


# Every matching rule is evaluated; the highest priority wins and earlier
# rules win ties. Order below is the documented precedence.
TIER1_RULES: List[Tier1Rule] = [
    Tier1Rule(
        priority=90,
        applies=lambda e: e.injection.mode == InjectionMode.ALWAYS,
        reason=lambda e: "always inject",
    ),
    Tier1Rule(
        priority=90,
        applies=lambda e: isinstance(e.state, LocationState) and e.state.is_current_location,
        reason=lambda e: "lorebook: current location",
    ),
    Tier1Rule(
        priority=85,
        applies=lambda e: isinstance(e.state, CharacterState) and e.state.is_present,
        reason=lambda e: "lorebook: character present",
    ),
    Tier1Rule(
        priority=75,
        applies=lambda e: isinstance(e.state, ItemState) and e.state.in_inventory,
        reason=lambda e: "lorebook: in inventory",
    ),
    Tier1Rule(
        priority=70,
        applies=lambda e: isinstance(e.state, FactionState)
        and e.state.status in ("allied", "hostile"),
        reason=lambda e: f"lorebook: faction {e.state.status}",
    ),
]

# Context block section order and headings.
CONTEXT_SECTIONS: List[tuple] = [
    (EntryType.CHARACTER, "Characters"),
    (EntryType.LOCATION, "Locations"),
    (EntryType.ITEM, "Items"),
    (EntryType.FACTION, "Factions"),
    (EntryType.CONCEPT, "Lore"),
    (EntryType.EVENT, "Events"),
]

CONTEXT_HEADER = (
    "\n\n[LOREBOOK CONTEXT]\n"
    "(CANONICAL - All information below is established lore. Do not contradict these facts.)"
)


def sticky_priority(turns_since_activation: int, stickiness: int) -> Optional[int]:
    """
    Tier 1 priority for an entry activated ``turns_since_activation`` positions ago.

    Fades linearly from 80 toward 60 across the window and returns None once
    the window has closed.
    """
    if turns_since_activation < 0 or turns_since_activation > stickiness:
        return None
    fade_ratio = 1 - turns_since_activation / (stickiness + 1)
    return round(STICKY_FLOOR + fade_ratio * STICKY_RANGE)


def text_matches(term: str, search_content: str) -> bool:
    """True when ``term`` occurs in the lowercased corpus, as a substring or whole word."""
    normalized = term.lower().strip()
    if len(normalized) < 2:
        return False

    if normalized in search_content:
        return True

    return re.search(rf"\b{re.escape(normalized)}\b", search_content, re.IGNORECASE) is not None


def entry_key(entry: Entry) -> Tuple[EntryOrigin, EntryType, str]:
    """
    Identity used to deduplicate across tiers.

    Live entities and lorebook entries come from different stores, so a
    raw id alone can collide between them or between live entity types.
    """
    return entry.origin, entry.type, entry.id


def character_to_entry(char: Character) -> Entry:
    return Entry(
        id=char.id,
        story_id=char.story_id,
        branch_id=char.branch_id,
        type=EntryType.CHARACTER,
        name=char.name,
        description=char.description or "",
        state=CharacterState(
            is_present=char.status == "active",
            current_disposition=char.relationship,
            relationship_status=char.relationship or "unknown",
            known_facts=list(char.traits),
        ),
        injection=InjectionPolicy(mode=InjectionMode.ALWAYS, priority=LIVE_CHARACTER_PRIORITY),
        created_by="ai",
        origin=EntryOrigin.LIVE,
    )


def location_to_entry(loc: Location) -> Entry:
    return Entry(
        id=loc.id,
        story_id=loc.story_id,
        branch_id=loc.branch_id,
        type=EntryType.LOCATION,
        name=loc.name,
        description=loc.description or "",
        state=LocationState(
            is_current_location=loc.current,
            visit_count=1 if loc.visited else 0,
        ),
        injection=InjectionPolicy(mode=InjectionMode.ALWAYS, priority=LIVE_LOCATION_PRIORITY),
        created_by="ai",
        origin=EntryOrigin.LIVE,
    )


def item_to_entry(item: Item) -> Entry:
    description = item.description or ""
    if item.quantity > 1:
        description += f" (x{item.quantity})"
    if item.equipped:
        description += " [equipped]"

    return Entry(
        id=item.id,
        story_id=item.story_id,
        branch_id=item.branch_id,
        type=EntryType.ITEM,
        name=item.name,
        description=description.strip(),
        state=ItemState(
            in_inventory=item.in_inventory,
            current_location=item.location,
            condition="equipped" if item.equipped else None,
        ),
        injection=InjectionPolicy(mode=InjectionMode.ALWAYS, priority=LIVE_ITEM_PRIORITY),
        created_by="ai",
        origin=EntryOrigin.LIVE,
    )


class EntryRetrievalService:
    """
    Selects lorebook entries for the narrator's prompt using tiered injection.

    Tiers 1 and 2 are synchronous and deterministic. Tier 3 needs a judge
    and is skipped when none is configured.
    """

    def __init__(
        self,
        judge: Optional[JudgeClient] = None,
        config: Optional[EntryRetrievalConfig] = None,
    ):
        self.judge = judge
        self.config = config or EntryRetrievalConfig()

    async def retrieve_context(
        self,
        entries: Sequence[Entry],
        user_input: str,
        recent_transcript: Sequence[StoryEntry],
        live_state: Optional[LiveWorldState] = None,
        activation_tracker: Optional[ActivationTracker] = None,
        current_turn: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> EntryRetrievalResult:
        """
        Run all three tiers and render the lorebook context block.

        Args:
            entries: Lorebook entries for the current branch
            user_input: The user's action for this turn
            recent_transcript: Recent transcript entries, oldest first
            live_state: Tracked characters, locations and items
            activation_tracker: Stickiness bookkeeping, updated in place
            current_turn: Transcript position of this turn; defaults to
                ``len(recent_transcript)``
            cancel_event: Set to abandon the Tier 3 judge call

        Returns:
            EntryRetrievalResult with per-tier lists, sorted union and context block
        """
        if current_turn is None:
            current_turn = len(recent_transcript)

        logger.debug(
            "Entry retrieval started",
            total_entries=len(entries),
            user_input_length=len(user_input),
            recent_count=len(recent_transcript),
            current_turn=current_turn,
            live_characters=len(live_state.characters) if live_state else 0,
            live_locations=len(live_state.locations) if live_state else 0,
            live_items=len(live_state.items) if live_state else 0,
        )

        search_content = self._build_search_content(user_input, recent_transcript)

        tier1 = self.get_tier1_entries(entries, live_state, activation_tracker, current_turn)
        selected: Set[tuple] = {entry_key(r.entry) for r in tier1}
        logger.debug("Tier 1 entries", count=len(tier1), names=[r.entry.name for r in tier1])

        candidates = [
            e for e in entries if entry_key(e) not in selected and not e.is_never_injected
        ]

        tier2 = self.get_tier2_entries(candidates, search_content)
        selected.update(entry_key(r.entry) for r in tier2)
        logger.debug("Tier 2 entries", count=len(tier2), names=[r.entry.name for r in tier2])

        remaining = [e for e in candidates if entry_key(e) not in selected]

        tier3: List[RetrievedEntry] = []
        if self.config.enable_llm_selection and self.judge is not None and remaining:
            tier3 = await self.get_tier3_entries(
                remaining, user_input, recent_transcript, cancel_event
            )
            logger.debug("Tier 3 entries", count=len(tier3), names=[r.entry.name for r in tier3])
        else:
            logger.debug(
                "Tier 3 skipped",
                enabled=self.config.enable_llm_selection,
                has_judge=self.judge is not None,
                remaining=len(remaining),
            )

        if activation_tracker is not None:
            self._record_activations(activation_tracker, tier2 + tier3, current_turn)

        # sorted() is stable, so equal priorities keep tier order
        all_entries = sorted(tier1 + tier2 + tier3, key=lambda r: r.priority, reverse=True)
        context_block = self.build_context_block(all_entries)

        logger.info(
            "Entry retrieval complete",
            tier1=len(tier1),
            tier2=len(tier2),
            tier3=len(tier3),
            block_length=len(context_block),
        )

        return EntryRetrievalResult(
            tier1=tier1,
            tier2=tier2,
            tier3=tier3,
            all=all_entries,
            context_block=context_block,
        )

    # ==================== Tier 1 ====================

    def get_tier1_entries(
        self,
        entries: Sequence[Entry],
        live_state: Optional[LiveWorldState] = None,
        activation_tracker: Optional[ActivationTracker] = None,
        current_turn: Optional[int] = None,
    ) -> List[RetrievedEntry]:
        """
        Live tracked entities first, then lorebook entries by rule or stickiness.
        """
        result: List[RetrievedEntry] = []
        included: Set[tuple] = set()

        if live_state is not None and not live_state.is_empty():
            for retrieved in self._live_entries(live_state):
                key = entry_key(retrieved.entry)
                if key in included:
                    continue
                result.append(retrieved)
                included.add(key)

        for entry in entries:
            if entry_key(entry) in included or entry.is_never_injected:
                continue

            priority, reason = self._rule_priority(entry)

            if priority is None and activation_tracker is not None and current_turn is not None:
                priority, reason = self._sticky_priority(entry, activation_tracker, current_turn)

            if priority is not None:
                result.append(
                    RetrievedEntry(entry=entry, tier=1, priority=priority, match_reason=reason)
                )
                included.add(entry_key(entry))

        return result

    def _live_entries(self, live_state: LiveWorldState) -> List[RetrievedEntry]:
        result: List[RetrievedEntry] = []

        for char in live_state.characters:
            if char.status == "active":
                result.append(
                    RetrievedEntry(
                        entry=character_to_entry(char),
                        tier=1,
                        priority=LIVE_CHARACTER_PRIORITY,
                        match_reason="active character",
                    )
                )

        for loc in live_state.locations:
            if loc.current:
                result.append(
                    RetrievedEntry(
                        entry=location_to_entry(loc),
                        tier=1,
                        priority=LIVE_LOCATION_PRIORITY,
                        match_reason="current location",
                    )
                )

        for item in live_state.items:
            if item.in_inventory:
                result.append(
                    RetrievedEntry(
                        entry=item_to_entry(item),
                        tier=1,
                        priority=LIVE_ITEM_PRIORITY,
                        match_reason="in inventory",
                    )
                )

        return result

    @staticmethod
    def _rule_priority(entry: Entry) -> tuple:
        best_priority: Optional[int] = None
        best_reason = ""
        for rule in TIER1_RULES:
            if rule.applies(entry) and (best_priority is None or rule.priority > best_priority):
                best_priority = rule.priority
                best_reason = rule.reason(entry)
        return best_priority, best_reason

    def _sticky_priority(
        self,
        entry: Entry,
        activation_tracker: ActivationTracker,
        current_turn: int,
    ) -> tuple:
        turns_since = activation_tracker.turns_since(entry.id, current_turn)
        if turns_since is None:
            return None, ""

        stickiness = self.config.stickiness_for(entry.type)
        priority = sticky_priority(turns_since, stickiness)
        if priority is None:
            return None, ""

        return priority, f"sticky ({entry.type.value}, {stickiness - turns_since} turns left)"

    # ==================== Tier 2 ====================

    def _build_search_content(
        self, user_input: str, recent_transcript: Sequence[StoryEntry]
    ) -> str:
        count = self.config.recent_entries_count
        recent = list(recent_transcript)[-count:] if count > 0 else []
        recent_content = " ".join(e.content for e in recent)
        return f"{user_input} {recent_content}".lower()

    def get_tier2_entries(
        self, entries: Sequence[Entry], search_content: str
    ) -> List[RetrievedEntry]:
        """Match name, aliases and keywords against the lowercased search corpus."""
        result: List[RetrievedEntry] = []

        for entry in entries:
            if entry.is_never_injected:
                continue

            matched = [term for term in entry.match_terms() if text_matches(term, search_content)]
            if not matched:
                continue

            unique = list(dict.fromkeys(matched))
            result.append(
                RetrievedEntry(
                    entry=entry,
                    tier=2,
                    priority=KEYWORD_BASE_PRIORITY + entry.injection.priority,
                    match_reason=f"matched: {', '.join(unique)}",
                )
            )

        return result

    # ==================== Tier 3 ====================

    async def get_tier3_entries(
        self,
        candidates: Sequence[Entry],
        user_input: str,
        recent_transcript: Sequence[StoryEntry],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[RetrievedEntry]:
        """
        Ask the judge which leftover entries still matter.

        Returns an empty list on any judge or parse failure.
        """
        if self.judge is None or not candidates:
            return []

        prompt = ENTRY_SELECTION_PROMPT.format(
            recent_content=self._format_recent_scene(recent_transcript),
            user_input=user_input,
            entry_list=self._format_candidates(candidates),
        )

        try:
            response = await call_judge(
                self.judge,
                operation="entry_selection",
                system_prompt=ENTRY_SELECTION_SYSTEM_PROMPT,
                user_prompt=prompt,
                model=self.config.tier3_model,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                cancel_event=cancel_event,
            )
        except JudgeError as e:
            logger.warning("Tier 3 selection failed", error=str(e), candidates=len(candidates))
            return []

        try:
            indices = parse_index_selection(response, len(candidates))
        except JudgeResponseParseError as e:
            logger.warning("Tier 3 response unparseable", error=str(e))
            return []

        logger.debug("Tier 3 selected indices", indices=indices)

        result = [
            RetrievedEntry(
                entry=candidates[idx - 1],
                tier=3,
                priority=JUDGE_BASE_PRIORITY + candidates[idx - 1].injection.priority,
                match_reason="judged relevant",
            )
            for idx in indices
        ]

        if self.config.max_tier3_entries > 0:
            return result[: self.config.max_tier3_entries]
        return result

    @staticmethod
    def _format_candidates(candidates: Sequence[Entry]) -> str:
        lines = []
        for i, entry in enumerate(candidates, start=1):
            description = entry.description[:TIER3_DESCRIPTION_CHARS]
            if len(entry.description) > TIER3_DESCRIPTION_CHARS:
                description += "..."
            lines.append(f'{i}. [{entry.type.value.upper()}] "{entry.name}": {description}')
        return "\n".join(lines)

    def _format_recent_scene(self, recent_transcript: Sequence[StoryEntry]) -> str:
        count = self.config.recent_entries_count
        recent = list(recent_transcript)[-count:] if count > 0 else []
        if not recent:
            return "(Story just started)"
        return "\n\n".join(
            f"[{e.tag}]: {e.content[:TIER3_TRANSCRIPT_CHARS]}" for e in recent
        )

    # ==================== Post-processing ====================

    def _record_activations(
        self,
        activation_tracker: ActivationTracker,
        retrieved: Sequence[RetrievedEntry],
        current_turn: int,
    ) -> None:
        recorded = 0
        for r in retrieved:
            # Live entities are re-derived from world state every turn
            if r.entry.is_live:
                continue
            activation_tracker.record_activation(r.entry.id, current_turn)
            recorded += 1

        pruned = activation_tracker.prune_older_than(self.config.max_stickiness, current_turn)
        logger.debug(
            "Recorded activations",
            recorded=recorded,
            pruned=pruned,
            current_turn=current_turn,
        )

    def build_context_block(self, retrieved: Sequence[RetrievedEntry]) -> str:
        """Render retrieved entries grouped by type, under a canonicity disclaimer."""
        if not retrieved:
            return ""

        by_type: Dict[EntryType, List[Entry]] = {entry_type: [] for entry_type, _ in CONTEXT_SECTIONS}
        for r in retrieved:
            by_type[r.entry.type].append(r.entry)

        block = CONTEXT_HEADER
        for entry_type, heading in CONTEXT_SECTIONS:
            group = by_type[entry_type]
            if not group:
                continue
            block += f"\n\n• {heading}:"
            for entry in group:
                block += f"\n  - {entry.name}: {self.truncate_words(entry.description)}"
                if isinstance(entry.state, CharacterState) and entry.state.current_disposition:
                    block += f" [{entry.state.current_disposition}]"

        return block

    def truncate_words(self, text: str) -> str:
        max_words = self.config.max_words_per_entry
        if max_words <= 0:
            return text
        words = text.split()
        if len(words) <= max_words:
            return text
        return f"{' '.join(words[:max_words])} [...]"


async def retrieve_context(
    entries: Sequence[Entry],
    user_input: str,
    recent_transcript: Sequence[StoryEntry],
    live_state: Optional[LiveWorldState] = None,
    activation_tracker: Optional[ActivationTracker] = None,
    judge: Optional[JudgeClient] = None,
    config: Optional[EntryRetrievalConfig] = None,
    current_turn: Optional[int] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> EntryRetrievalResult:
    """Quick retrieval without keeping a service instance around."""
    service = EntryRetrievalService(judge, config or EntryRetrievalConfig.from_settings())
    return await service.retrieve_context(
        entries,
        user_input,
        recent_transcript,
        live_state=live_state,
        activation_tracker=activation_tracker,
        current_turn=current_turn,
        cancel_event=cancel_event,
    )
