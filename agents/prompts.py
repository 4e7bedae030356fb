NO_ANSWER_SENTINEL = (
    "The uploaded contents don't have an answer for that question. "
    "Please try the 'web for answer' option."
)

SAFETY_APOLOGY = "I'm sorry, I cannot respond to that due to safety guidelines."

PASTED_CONTENT_TEMPLATE = """--- START OF PASTED CONTENT ---
{text}
--- END OF PASTED CONTENT ---"""


SOURCES_HEADER_PROMPT = (
    "Your analysis should be based on the following merged sources: {descriptions}. "
    "Please synthesize information from all these sources."
)

SEARCH_FOCUS_PROMPT = "\n\nWhen performing the Google Search, focus on this query: {queries}."


LESSON_SYSTEM_PROMPT = """You are an expert {domain} educator. Your task is to analyze the provided content and break it down into {min_sections}-{max_sections} sequential teaching sections.{focus}
For each section, provide a title and a series of question-and-answer pairs that capture the core concepts.
The 'answer' for each question should be detailed, comprehensive, and can include Markdown for formatting.
Important: Your output is for {audience}, so maintain a professional, technical tone."""

FOCUS_TOPIC_PROMPT = (
    ' The user has a specific interest in "{topic}". Focus your analysis and section creation '
    "on this topic, extracting all relevant details from the content."
)

SEARCH_GROUNDING_PROMPT = """
When creating the teaching sections, you MUST ground your entire response in the search results provided by the Google Search tool. The sources you use will be displayed to the user."""

MISSING_DOCUMENTS_PROMPT = """
If you determine that the most relevant information is contained within PDF documents that you cannot access, you MUST NOT generate the teaching sections. Instead, your entire response MUST be a valid JSON object with a single key 'missing_pdfs', which is an array of strings, where each string is the URL of a PDF you need the user to upload. Example: {"missing_pdfs": ["https://example.com/study.pdf"]}. Only use this format if you are confident that the primary information is in an inaccessible PDF."""

RAW_JSON_OUTPUT_PROMPT = """
Otherwise, the final output MUST be a valid JSON array of objects, each with a "section_title" string and a "qa_pairs" array of {"question", "answer"} objects.
Return ONLY the raw JSON. Do not add any text before or after the JSON. Do not wrap the JSON in markdown backticks or code fences."""

SCHEMA_OUTPUT_PROMPT = """
Otherwise, the final output MUST be a valid JSON array of objects, strictly adhering to the provided schema. Do not add any text before or after the JSON."""


FOLLOWUP_SYSTEM_PROMPT = """You are a helpful {domain} AI teaching assistant. The user is asking a follow-up question about a specific topic from a lesson you are teaching.

This is the immediate context for their question:
- Original Question: "{question}"
- Original Answer: "{answer}"

This is the broader context of the entire teaching section:
"{section}"

Your task is to provide a clear, concise, and helpful answer to their follow-up question. Maintain a patient and encouraging tone."""

FOLLOWUP_SEARCH_PROMPT = """
You MUST use the Google Search tool to find the most up-to-date and relevant information to answer the user's question. Base your answer on the search results. When you use information from a search result, you MUST add a numeric citation in the format [1], [2], etc., directly after the statement. The citation numbers must correspond to the order of sources provided in the grounding metadata. For example: 'This is a statement from a source [1]. This is another statement from another source [2].'"""

FOLLOWUP_CONTEXT_ONLY_PROMPT = """
Answer based ONLY on the provided context. If the answer to the user's question is not found within the provided context (Original Question, Original Answer, and broader context), you MUST respond with the exact phrase: "{sentinel}" Do not add any other text or explanation."""
