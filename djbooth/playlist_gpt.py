from openai import OpenAI
from jsonschema import validate, ValidationError
from .prompts import (
    CURATOR_SYSTEM_PROMPT, PLAYLIST_SUGGESTION_PROMPT,
    ANALYST_SYSTEM_PROMPT, INTERACTION_ANALYSIS_PROMPT,
    SEQUENCER_SYSTEM_PROMPT, PLAYLIST_ORDER_PROMPT,
    WRITER_SYSTEM_PROMPT, PLAYLIST_DESCRIPTION_PROMPT,
)
import logging
import json
import os
import re


logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 50
DEFAULT_DESCRIPTION = "A carefully curated playlist for your special event."

suggestions_schema = {
    "type": "array",
    "items": {"type": "string"}
}

interaction_analysis_schema = {
    "type": "object",
    "properties": {
        "preferences": {"type": "string"},
        "suggestions": {
            "type": "array",
            "items": {"type": "string", "minLength": 1}
        }
    },
    "required": ["preferences", "suggestions"]
}

order_schema = {
    "type": "array",
    "items": {"type": "integer"}
}

_client = None

def get_client():
    # created on first use so the app can boot without an api key
    global _client
    if _client is None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set")
        _client = OpenAI(api_key=api_key)
    return _client


def gpt_calling(prompt, system_prompt=None, temperature=0.8, max_tokens=1000):
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt.strip()})
    messages.append({"role": "user", "content": prompt})

    response = get_client().chat.completions.create(
        model=os.getenv("OPENAI_MODEL", "gpt-4o"),
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens
    )

    return response.choices[0].message.content or ""


def verify_response(response, schema):

    # catch backtick case
    match = re.search(r"```(?:json)?\s*(\{.*?\}|\[.*?\])\s*```", response, re.DOTALL)
    if match:
        response = match.group(1)

    # Parse string to Python obj
    try:
        data = json.loads(response)
    except json.JSONDecodeError:
        return False, "Invalid JSON format"

    # Validate against JSON schema
    try:
        validate(instance=data, schema=schema)
    except ValidationError as e:
        return False, f"JSON Schema validation error: {e.message}"

    return True, data


def call_gpt_and_verify(prompt, schema, system_prompt=None, temperature=0.7, max_tokens=1000, max_try=2):

    """
    Call gpt with prompt and verify it. If verification failed, try again and return error if it failed again.

    Input:
        prompt (str): input prompt
        schema (dict): output JSON schema
        system_prompt (str, optional): system message
        temperature (float): gpt calling temperature
        max_try (int): maximum number of trial

    Returns:
        dict or list: Parsed and validated result.

    Raises:
        RuntimeError: If all GPT calls fail.
        ValueError: If GPT returns invalid JSON after all retries.
    """

    for attempt in range(1, max_try + 1):
        try:
            response = gpt_calling(prompt, system_prompt=system_prompt, temperature=temperature, max_tokens=max_tokens)
        except Exception as e:
            if attempt == max_try:
                raise RuntimeError(f"GPT call failed on attempt {attempt}: {e}")
            continue

        valid, result = verify_response(response, schema)
        if valid:
            return result

        if attempt == max_try:
            raise ValueError(f"GPT response invalid after {max_try} tries: {result}")

    raise RuntimeError("Unexpected failure in call_gpt_and_verify.")


def _present(context, *keys):
    return [str(context[k]) for k in keys if context.get(k)]


def build_playlist_suggestion_prompt(context, base_prompt_template):
    """
    Build the song suggestion prompt from an event context.

    Only non-empty context fields contribute a line.

    Args:
        context (dict): event context, keys as in playlist_builder.parse_event_context
        base_prompt_template (str): template with '[INPUT]' as a placeholder

    Returns:
        str: The final prompt ready for GPT
    """
    minutes = context["playlist_duration"]
    parts = [f"Create a playlist for a {context['event_type']} event."]

    if context.get("event_description"):
        parts.append(f"Event description: {context['event_description']}")

    parts.append(f"Target duration: {minutes:g} minutes (approximately {round(minutes / 3.5)} songs)")

    years = _present(context, "graduation_year1", "graduation_year2")
    if years:
        parts.append(f"Graduation years: {', '.join(years)} (suggest music from their high school/college era)")

    towns = _present(context, "hometown1", "hometown2")
    if towns:
        parts.append(f"Hometowns: {', '.join(towns)}")

    colleges = _present(context, "college1", "college2")
    if colleges:
        parts.append(f"Colleges: {', '.join(colleges)}")

    concerts = _present(context, "last_concert1", "last_concert2", "last_concert3")
    if concerts:
        parts.append(f"Recent concerts attended: {', '.join(concerts)}")

    if context.get("inspiration_artists"):
        parts.append(f"Inspiration artists: {', '.join(context['inspiration_artists'])}")

    if context.get("inspiration_tracks"):
        parts.append(f"Inspiration tracks: {', '.join(context['inspiration_tracks'])}")

    return base_prompt_template.replace("[INPUT]", "\n".join(parts))


_LIST_MARKER = re.compile(r"^\s*(?:[-*•]\s+|\d+[.)]\s*)")
_DASH_SEPARATOR = re.compile(r"\s+[-–—]\s+")
_BY_SEPARATOR = re.compile(r"\s+by\s+", re.IGNORECASE)

def extract_song_suggestions(text):
    """
    Recover "Title - Artist" pairs from free text, one per line.

    Accepts bullets, numbering, surrounding quotes and either a spaced dash
    or " by " between title and artist. Lines without a separator are skipped.
    """
    suggestions = []
    for line in text.splitlines():
        line = _LIST_MARKER.sub("", line).strip().strip("\"'`,[]").strip()
        if not line:
            continue

        parts = _DASH_SEPARATOR.split(line, maxsplit=1)
        if len(parts) < 2:
            parts = _BY_SEPARATOR.split(line, maxsplit=1)

        if len(parts) == 2:
            title, artist = parts[0].strip().strip("\"'"), parts[1].strip().strip("\"'")
            if title and artist:
                suggestions.append(f"{title} - {artist}")

    return suggestions


def generate_playlist_suggestions(context):
    prompt = build_playlist_suggestion_prompt(context, PLAYLIST_SUGGESTION_PROMPT)
    response = gpt_calling(prompt, system_prompt=CURATOR_SYSTEM_PROMPT, temperature=0.8, max_tokens=2000)

    valid, result = verify_response(response, suggestions_schema)
    if valid:
        suggestions = [s.strip() for s in result if s.strip()]
    else:
        logger.warning(f"Suggestions were not a JSON array ({result}), extracting from text")
        suggestions = extract_song_suggestions(response)

    return suggestions[:MAX_SUGGESTIONS]


def _format_track_lines(tracks):
    lines = []
    for t in tracks:
        genres = f" ({', '.join(t['genres'])})" if t.get("genres") else ""
        lines.append(f"- {t['name']} by {t['artist']}{genres}")
    return "\n".join(lines) or "(none)"


def analyze_playlist_interactions(hearted_tracks, removed_tracks):
    """
    Infer listening preferences from hearted and removed tracks.

    Returns:
        dict: 'preferences' (str) and 'suggestions' (list of "Title - Artist")
    """
    prompt = (INTERACTION_ANALYSIS_PROMPT
              .replace("[HEARTED]", _format_track_lines(hearted_tracks))
              .replace("[REMOVED]", _format_track_lines(removed_tracks)))

    try:
        return call_gpt_and_verify(prompt, interaction_analysis_schema,
                                   system_prompt=ANALYST_SYSTEM_PROMPT, temperature=0.7, max_tokens=1500)
    except ValueError as e:
        logger.warning(f"Interaction analysis unusable: {e}")
        return {"preferences": "Unable to analyze preferences", "suggestions": []}


def _format_order_line(index, t):
    details = [f"{round((t.get('duration') or 0) / 1000)}s"]
    if t.get("bpm") is not None:
        details.append(f"{t['bpm']} BPM")
    if t.get("energy") is not None:
        details.append(f"energy: {t['energy']}")
    if t.get("valence") is not None:
        details.append(f"valence: {t['valence']}")
    if t.get("genres"):
        details.append(f"genres: {', '.join(t['genres'])}")
    return f"{index}: {t['name']} by {t['artist']} ({', '.join(details)})"


def order_playlist(tracks, event_type):
    """
    Ask GPT for a play order of ``tracks``.

    Returns:
        list of int: indices into ``tracks``. Identity order when the response is not a JSON
        array of integers. Range, completeness and duplicates are not checked here.
    """
    prompt = (PLAYLIST_ORDER_PROMPT
              .replace("[COUNT]", str(len(tracks)))
              .replace("[EVENT_TYPE]", event_type)
              .replace("[TRACKS]", "\n".join(_format_order_line(i, t) for i, t in enumerate(tracks))))

    response = gpt_calling(prompt, system_prompt=SEQUENCER_SYSTEM_PROMPT, temperature=0.6, max_tokens=1000)

    valid, result = verify_response(response, order_schema)
    # jsonschema accepts 1.0 as an integer; list indexing does not
    if valid and all(type(i) is int for i in result):
        return result

    logger.warning(f"Order response unusable ({result}), keeping original order")
    return list(range(len(tracks)))


def generate_playlist_description(context):
    prompt = (PLAYLIST_DESCRIPTION_PROMPT
              .replace("[EVENT_TYPE]", str(context.get("eventType") or "event"))
              .replace("[INPUT]", json.dumps(context, indent=2)))

    description = gpt_calling(prompt, system_prompt=WRITER_SYSTEM_PROMPT, temperature=0.8, max_tokens=200)
    return description.strip() or DEFAULT_DESCRIPTION
