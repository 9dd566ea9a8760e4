"""
Tier 3 entry selection prompt.

Shown only the lorebook entries that neither live state nor keyword
matching picked up; the judge returns the numbers of the ones that still
matter for the next turn.
"""

ENTRY_SELECTION_SYSTEM_PROMPT = """You are a lorebook retrieval system for an interactive story. You pick background entries that the narrator needs for the next turn, and nothing else. You answer with JSON only."""

ENTRY_SELECTION_PROMPT = """These entries were NOT matched by keyword search. Your job is to select any that are still relevant to the current scene.

## Current Scene
{recent_content}

## User's Next Action
"{user_input}"

## Available Lorebook Entries (not keyword-matched)
{entry_list}

## Instructions
Select entries that are contextually relevant even though they weren't keyword-matched. Include entries if they:
- Describe background lore, magic systems, or world rules that apply
- Are thematically connected to the current situation
- Provide context that would help the narrator
- Describe factions, organizations, or history relevant to current events

Be selective - these entries didn't match keywords, so only include ones with genuine contextual relevance.

Return ONLY JSON in this shape: {{"selected": [1, 2, 3]}}
Return {{"selected": []}} if none are relevant.
"""
