"""
Recall - Prompt Templates & Trigger Constants
===============================================
Centralised prompt text and trigger vocabularies for the memory
pipeline.  All model-facing text lives here so it can be versioned,
reviewed and tuned independently of application logic.

Exports
-------
MEMORY_DIRECTIVE, MEMORY_CONTEXT_HEADER, MEMORY_REASSERTION,
MEMORY_ACKNOWLEDGEMENT, NO_HISTORY_RESPONSE, HISTORY_RESULTS_HEADER,
FAVORITE_ANSWER, PREFERENCE_ANSWER, IDENTITY_ANSWER, TOPICS_ANSWER,
TRIGGER_KEYWORDS, TRIGGER_PATTERNS, TOPIC_STOPWORDS.
"""

# ══════════════════════════════════════════════════════════════════════
#  CONTEXT INJECTION: synthetic prior exchange
# ══════════════════════════════════════════════════════════════════════
# Order is fixed: directive (user) → context (agent) → re-assertion
# (user) → acknowledgement (agent).  The live user message follows.

MEMORY_DIRECTIVE: str = """I am about to share facts retrieved from our previous conversations.
Treat them as ground truth about me and prioritize them over your general knowledge when you answer my next question."""

MEMORY_CONTEXT_HEADER: str = "Here is what I found in our previous conversations:"

MEMORY_REASSERTION: str = """Thank you. When you answer my next message, use ONLY the information you just provided about our previous conversations.
If it does not contain the answer, say that you could not find it instead of guessing."""

MEMORY_ACKNOWLEDGEMENT: str = "Understood! I will answer your next message using the information from our previous conversations."

# One line per retrieved snippet inside the agent context turn
MEMORY_CONTEXT_LINE: str = '{index}. [{speaker}, {timestamp}, from "{title}"] {text}'


# ══════════════════════════════════════════════════════════════════════
#  CHAT-HISTORY SEARCH: tool output text
# ══════════════════════════════════════════════════════════════════════

NO_HISTORY_RESPONSE: str = "I couldn't find any relevant past conversations about \"{query}\". This might be the first time we're discussing this topic."

HISTORY_RESULTS_HEADER: str = "Here's what we've discussed before about \"{query}\":"

HISTORY_RESULT_ENTRY: str = """{index}. From "{title}" ({timestamp})
   {speaker}: {text}"""

HISTORY_RESULTS_FOOTER: str = "Found {count} relevant past conversation{plural}."

# Direct answers extracted from the user's own statements
FAVORITE_ANSWER: str = "Based on our previous conversations, your favorite {subject} is **{value}**!"
PREFERENCE_ANSWER: str = "Based on our previous conversations, you prefer **{value}**."
IDENTITY_ANSWER: str = "Based on our previous conversations, {name} is **{value}**."
TOPICS_ANSWER: str = "Based on our previous conversations, we've discussed: **{topics}**."


# ══════════════════════════════════════════════════════════════════════
#  TRIGGER VOCABULARY: should this message consult memory?
# ══════════════════════════════════════════════════════════════════════
# Plain substrings, matched against the lower-cased message.  Grouped
# by the kind of question they signal; any hit triggers retrieval.

TRIGGER_KEYWORDS: dict[str, tuple[str, ...]] = {
    "third_person": ("who is", "who's", "who was"),
    "preference": ("my favorite", "my favourite", "i prefer", "my preference", "i like", "i love"),
    "recall": ("what did we discuss", "we discussed", "discussed with you", "talked with you", "talked about", "mentioned", "told you", "earlier", "before", "remember", "last time", "previously"),
    "document": ("resume", "my cv", "the file", "my file", "my document", "the document", "uploaded", "attachment"),
}

# Regular expressions for shapes a substring cannot express
TRIGGER_PATTERNS: dict[str, tuple[str, ...]] = {
    "third_person": (r"\bwhat does .+ do\b", r"\bwhat is .+'s\b"),
    "personal_fact": (r"\bwhat (?:is|are) my\b", r"\bwhat's my\b", r"\bwhat did i\b", r"\b(?:do|did|have) i\b"),
}

# Words never reported as discussion topics
TOPIC_STOPWORDS: frozenset[str] = frozenset({"that", "this", "with", "from", "they", "have", "been", "were", "said", "told", "about", "would", "could", "should", "there", "their", "which", "what", "when", "where", "these", "those"})
