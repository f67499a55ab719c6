# extraction_service.py

import json
import logging

from google import genai
from google.genai import types

from errors import ExtractionError

ROSTER_PROMPT = """
Extract the shift roster from this image.
The image is a table where:
- The first column is "Shift" (Day of week).
- The second column is "Dates" (e.g., 1-Feb-26).
- Subsequent columns are Engineer Names.

The cells for each engineer on a specific date contain their shift:
- "Morning", "Evening", "Night", "Morning+Evening".
- "Paternity Leave" or other leave types.
- Red colored cells or empty cells mean the engineer is "Off".

Return a JSON array of objects. Each object must have:
- "date": The date converted to YYYY-MM-DD format (e.g., 2026-02-01).
- "engineer_name": The full name of the engineer from the column header.
- "shift_type": The shift text found in the cell, or "Off" if the cell is empty or red.

Process every date and every engineer shown in the table.
"""

ROSTER_FIELDS = ('date', 'engineer_name', 'shift_type')

ROSTER_SCHEMA = types.Schema(
    type=types.Type.ARRAY,
    items=types.Schema(
        type=types.Type.OBJECT,
        properties={field: types.Schema(type=types.Type.STRING) for field in ROSTER_FIELDS},
        required=list(ROSTER_FIELDS),
    ),
)


def get_extraction_client(api_key):
    """Builds a Gemini client; extraction is unavailable without a key."""
    if not api_key:
        raise ExtractionError("Gemini API key is not configured.")
    return genai.Client(api_key=api_key)


def parse_roster_response(text):
    """Decodes model output into a list of {date, engineer_name, shift_type}."""
    if not text:
        raise ExtractionError("Model returned empty response")
    try:
        rows = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Model returned invalid JSON: {e.msg}") from e
    if not isinstance(rows, list):
        raise ExtractionError("Model output is not a list of roster rows.")
    for i, row in enumerate(rows):
        if not isinstance(row, dict) or not all(isinstance(row.get(f), str) for f in ROSTER_FIELDS):
            raise ExtractionError(f"Roster row {i} is missing date, engineer_name or shift_type.")
    return [{f: row[f] for f in ROSTER_FIELDS} for row in rows]


def extract_roster(client, model, image_bytes, mime_type):
    """Sends a roster image to the model and returns the parsed rows."""
    try:
        response = client.models.generate_content(
            model=model,
            contents=[types.Part.from_bytes(data=image_bytes, mime_type=mime_type), ROSTER_PROMPT],
            config=types.GenerateContentConfig(
                response_mime_type='application/json',
                response_schema=ROSTER_SCHEMA,
            ),
        )
    except Exception as e:
        logging.error(f"Roster extraction request failed: {e}", exc_info=True)
        raise ExtractionError("Failed to parse roster. Please try again.") from e
    rows = parse_roster_response(response.text)
    logging.info(f"Extracted {len(rows)} roster rows from uploaded image.")
    return rows
