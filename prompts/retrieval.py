"""
Chapter recall prompts.

RETRIEVAL_DECISION_PROMPT sees chapter summaries only, never full chapter
text. CHAPTER_QUESTION_PROMPT answers the follow-up questions it poses.
"""

RETRIEVAL_DECISION_SYSTEM_PROMPT = """You decide which past story chapters are relevant for the current moment.

Guidelines:
- Only include chapters that are ACTUALLY relevant to the current context
- Often, no chapters need to be recalled - return empty arrays if nothing is relevant
- Consider: characters mentioned, locations being revisited, plot threads referenced
"""

RETRIEVAL_DECISION_PROMPT = """Based on the user's input and current scene, decide which past chapters are relevant.

USER INPUT:
"{user_input}"

CURRENT SCENE (last few messages):
\"\"\"
{recent_context}
\"\"\"

CHAPTER SUMMARIES:
{chapter_summaries}

Respond with JSON:
{{
  "relevantChapterIds": ["id1", "id2"],
  "queries": [
    {{"chapterId": "id1", "question": "What was X?"}}
  ]
}}

Guidelines:
- Maximum {max_chapters} chapters
- Return empty arrays if nothing is relevant
"""

CHAPTER_QUESTION_SYSTEM_PROMPT = """You answer specific questions about story chapters. Be concise and factual. Only include information that directly answers the question. If the chapter doesn't contain relevant information, say "Not mentioned in this chapter."
"""

CHAPTER_QUESTION_PROMPT = """{chapter_content}

QUESTION: {question}

Provide a concise, factual answer based only on the chapter content above. If the information isn't available in these chapters, say "Not mentioned in these chapters."
"""
