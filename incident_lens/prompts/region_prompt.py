"""
Targeted questions about a cropped region of a frame.

The crop is sent at full native resolution, so the model can read plates,
signal heads and small details that the half-resolution frame samples lose.
"""

REGION_QUERY_PROMPT = """You are a specialized forensic image analyst.
Analyze this cropped region of a traffic incident video frame.

USER QUERY: "{question}"

Respond ONLY with a valid JSON object. No explanation, no markdown, no extra text.

JSON fields:
- "question": the user query, repeated verbatim
- "answer": direct answer to the query
- "confidence": one of "High", "Medium", "Low"
- "details": technical observation details (resolution quality, lighting, occlusion)

Example output:
{{"question": "Is the signal red?", "answer": "Yes, the top lamp is lit red.", "confidence": "High", "details": "Signal head fully visible, no glare."}}
"""
