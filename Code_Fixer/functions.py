"""
Functions module for Code Fixer
Contains validation, agent calls, reconciliation and the action wrappers
"""

import json
import os
import traceback
from typing import Callable, List, Optional
from agents import Runner
from .models import (
    TokenManager, README_PATH,
    code_fixer_agent, readme_agent, error_explainer_agent
)
from .prompts import build_correction_prompt, build_readme_prompt, build_explain_prompt
from .schemas import (
    ActionResult, CorrectedFile, CorrectionRequest, CorrectionResult,
    ExplainErrorResult, FileInput, ImprovementFlags, ReadmeResult
)

# Global instances
token_manager = TokenManager()
in_flight_actions = set()

FILES_REQUIRED_MESSAGE = "At least one file is required."
ERROR_MESSAGE_REQUIRED_MESSAGE = "Error message cannot be empty."
NO_FIX_MESSAGE = "The AI couldn't generate a fix. Please try rephrasing your error or checking your code."
NO_README_MESSAGE = "The AI couldn't generate a README. Please try again."
NO_EXPLANATION_MESSAGE = "The AI couldn't explain this error. Please try again."
FIX_FAILED_MESSAGE = "An unexpected error occurred while analyzing the code."
README_FAILED_MESSAGE = "An unexpected error occurred while generating the README."
EXPLAIN_FAILED_MESSAGE = "An unexpected error occurred while explaining the error."
README_MISSING_MESSAGE = "Could not read README.md. It may not exist yet."


class AIResponseError(Exception):
    """The model answered, but the answer lacks the required fields"""


class ReadmeNotFoundError(FileNotFoundError):
    pass


# -------------------
# Utility Functions
# -------------------

def extract_text_from_event(event):
    """Extract clean text content from streaming events"""
    try:
        if hasattr(event, "data") and hasattr(event.data, "delta"):
            return event.data.delta
    except Exception:
        pass

    if isinstance(event, dict):
        if "delta" in event and isinstance(event["delta"], str):
            return event["delta"]
        if "text" in event and isinstance(event["text"], str):
            return event["text"]

    if isinstance(event, str):
        return event

    return ""


def clean_ai_output(output):
    """Clean AI output by removing a surrounding markdown fence"""
    cleaned = output.strip()
    if cleaned.startswith("json\n"):
        return cleaned[len("json\n"):].strip()
    if not cleaned.startswith("```"):
        return cleaned
    # Drop the opening fence along with its language tag
    first_newline = cleaned.find("\n")
    cleaned = cleaned[first_newline + 1:] if first_newline != -1 else cleaned[3:]
    cleaned = cleaned.strip()
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3].strip()
    return cleaned


def extract_json_from_text(text: str):
    """Extract the JSON object from LLM output.
    Returns: Parsed JSON dict
    Raises: ValueError when the output holds no complete JSON object, including truncated answers
    """
    if not isinstance(text, str):
        text = str(text) if text is not None else ""

    stripped = clean_ai_output(text)

    # Try to find a JSON object span
    start = stripped.find('{')
    end = stripped.rfind('}')
    if start != -1 and end != -1 and end > start:
        candidate = stripped[start:end + 1]
    else:
        candidate = stripped

    try:
        parsed = json.loads(candidate)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError as e:
        print(f"❌ Failed to parse JSON: {e}")

    error_msg = f"No complete JSON object in model output. Original text preview: {text[:200]}..."
    print(f"❌ {error_msg}")
    raise ValueError(error_msg)


def fixed_file_name(file_name):
    """Download name for a corrected file: script.py -> script.fixed.py, Makefile -> Makefile.fixed.txt"""
    name, _, extension = file_name.partition('.')
    if extension:
        return f"{name}.fixed.{extension}"
    return f"{name}.fixed.txt"


def begin_action(session_id, action):
    """Mark an action as in flight; False when one of the same type is already running"""
    key = (session_id, action)
    if key in in_flight_actions:
        return False
    in_flight_actions.add(key)
    return True


def end_action(session_id, action):
    in_flight_actions.discard((session_id, action))


# -------------------
# Validation and request building
# -------------------

def validate_correction_request(request: CorrectionRequest) -> Optional[str]:
    """Return the first field-level violation, or None when the request is valid"""
    if not request.files:
        return FILES_REQUIRED_MESSAGE
    if not request.error_message or not request.error_message.strip():
        return ERROR_MESSAGE_REQUIRED_MESSAGE
    return None


def validate_readme_request(files) -> Optional[str]:
    if not files:
        return FILES_REQUIRED_MESSAGE
    return None


def build_correction_request(registry, error_message: str, flags: ImprovementFlags) -> CorrectionRequest:
    return CorrectionRequest(
        files=[FileInput(name=f.name, content=f.content) for f in registry.to_list()],
        error_message=error_message,
        fix_error=flags.fix_error,
        improve_error_handling=flags.improve_error_handling,
        add_debugging=flags.add_debugging,
        enhance_user_messages=flags.enhance_user_messages,
    )


# -------------------
# Agent calls
# -------------------

async def run_agent_with_token_limit(agent, input_data):
    """Run an agent to completion and collect its streamed text"""
    input_tokens = token_manager.count_tokens(input_data)
    token_manager.add_tokens(input_tokens)
    print(f"🚀 Running {agent.name} agent ({input_tokens} input tokens)...")
    print("-" * 60)
    try:
        stream_result = Runner.run_streamed(agent, input=input_data)
        full_output = ""
        if hasattr(stream_result, "stream_events"):
            async for event in stream_result.stream_events():
                text_piece = extract_text_from_event(event)
                if text_piece:
                    full_output += text_piece

        if not full_output and getattr(stream_result, "final_output", None):
            full_output = str(stream_result.final_output)

        print(f"✅ {agent.name} finished ({len(full_output)} characters)")
        print("-" * 60)

        class ResultWrapper:
            def __init__(self, raw, text):
                self.raw = raw
                self.final_output = text

        return ResultWrapper(stream_result, full_output)
    except Exception as e:
        print(f"\n❌ Streaming error: {type(e).__name__}: {str(e)}")
        raise


def parse_correction_result(data) -> CorrectionResult:
    """Turn parsed model JSON into a CorrectionResult, rejecting incomplete answers"""
    corrected = data.get("correctedFiles", data.get("corrected_files"))
    explanation = data.get("explanation")
    if corrected is None or not isinstance(corrected, list):
        raise AIResponseError("Response is missing correctedFiles")
    if not isinstance(explanation, str) or not explanation.strip():
        raise AIResponseError("Response is missing explanation")

    corrected_files = []
    for entry in corrected:
        if not isinstance(entry, dict):
            raise AIResponseError(f"Malformed corrected file entry: {entry!r}")
        name = entry.get("name")
        code = entry.get("correctedCode", entry.get("corrected_code"))
        if not isinstance(name, str) or not isinstance(code, str):
            raise AIResponseError(f"Malformed corrected file entry for {name!r}")
        corrected_files.append(CorrectedFile(name=name, corrected_code=code))
    return CorrectionResult(corrected_files=corrected_files, explanation=explanation)


async def request_correction(request: CorrectionRequest) -> CorrectionResult:
    """Ask the fixer agent for corrected files and an explanation"""
    print(f"\n🐛 STARTING CODE FIX for {len(request.files)} file(s)")
    print(f"📋 Error Description: {request.error_message[:200]}")
    prompt = build_correction_prompt(request)
    result = await run_agent_with_token_limit(code_fixer_agent, prompt)
    data = extract_json_from_text(result.final_output)
    correction = parse_correction_result(data)
    print(f"📄 Corrected Files: {[c.name for c in correction.corrected_files]}")
    return correction


def resolve_corrections(original: List[FileInput], corrected: List[CorrectedFile]) -> Callable[[str], Optional[str]]:
    """Build a lookup from original file name to corrected code (None means no changes suggested)"""
    original_names = {f.name for f in original}
    corrections = {}
    for c in corrected:
        if c.name not in original_names:
            print(f"⚠️ Ignoring corrected file not in the upload: {c.name}")
            continue
        corrections[c.name] = c.corrected_code

    def resolve(file_name: str) -> Optional[str]:
        return corrections.get(file_name)

    return resolve


def merge_corrected_files(original: List[FileInput], corrected: List[CorrectedFile]) -> List[FileInput]:
    """Original file list with corrected content substituted where a correction exists"""
    resolve = resolve_corrections(original, corrected)
    merged = []
    for f in original:
        fixed = resolve(f.name)
        merged.append(FileInput(name=f.name, content=fixed if fixed is not None else f.content))
    return merged


async def generate_readme(files: List[FileInput]) -> ReadmeResult:
    print(f"\n📝 GENERATING README from {len(files)} file(s)")
    result = await run_agent_with_token_limit(readme_agent, build_readme_prompt(files))
    output = clean_ai_output(result.final_output or "")
    if output.startswith("{"):
        data = extract_json_from_text(output)
        readme = data.get("readme")
    else:
        # Plain markdown answers are accepted as the README itself
        readme = output
    if not isinstance(readme, str) or not readme.strip():
        raise AIResponseError("Response is missing readme")
    return ReadmeResult(readme=readme)


async def explain_error(code: str, error_message: str) -> ExplainErrorResult:
    print("\n🔍 EXPLAINING ERROR")
    result = await run_agent_with_token_limit(error_explainer_agent, build_explain_prompt(code, error_message))
    data = extract_json_from_text(result.final_output)
    corrected_code = data.get("correctedCode", data.get("corrected_code"))
    explanation = data.get("explanation")
    if not isinstance(corrected_code, str) or not isinstance(explanation, str) or not explanation.strip():
        raise AIResponseError("Response is missing correctedCode or explanation")
    return ExplainErrorResult(corrected_code=corrected_code, explanation=explanation)


def read_existing_readme(path=None) -> str:
    path = path or README_PATH
    if not os.path.isfile(path):
        raise ReadmeNotFoundError(path)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


# -------------------
# Action wrappers
# -------------------

async def fix_code_action(request: CorrectionRequest) -> ActionResult:
    error = validate_correction_request(request)
    if error:
        return ActionResult(error=error, error_kind="validation")
    try:
        result = await request_correction(request)
        return ActionResult(data=result)
    except AIResponseError as e:
        print(f"❌ Incomplete fix response: {e}")
        return ActionResult(error=NO_FIX_MESSAGE, error_kind="no_result")
    except Exception as e:
        print(f"❌ Error in fix_code_action: {type(e).__name__} - {e}")
        traceback.print_exc()
        return ActionResult(error=FIX_FAILED_MESSAGE, error_kind="unexpected")


async def generate_readme_action(files: List[FileInput]) -> ActionResult:
    error = validate_readme_request(files)
    if error:
        return ActionResult(error=error, error_kind="validation")
    try:
        result = await generate_readme(files)
        return ActionResult(data=result)
    except AIResponseError as e:
        print(f"❌ Incomplete README response: {e}")
        return ActionResult(error=NO_README_MESSAGE, error_kind="no_result")
    except Exception as e:
        print(f"❌ Error in generate_readme_action: {type(e).__name__} - {e}")
        traceback.print_exc()
        return ActionResult(error=README_FAILED_MESSAGE, error_kind="unexpected")


async def explain_error_action(code: str, error_message: str) -> ActionResult:
    if not code or not code.strip():
        return ActionResult(error="Code cannot be empty.", error_kind="validation")
    if not error_message or not error_message.strip():
        return ActionResult(error=ERROR_MESSAGE_REQUIRED_MESSAGE, error_kind="validation")
    try:
        result = await explain_error(code, error_message)
        return ActionResult(data=result)
    except AIResponseError as e:
        print(f"❌ Incomplete explanation response: {e}")
        return ActionResult(error=NO_EXPLANATION_MESSAGE, error_kind="no_result")
    except Exception as e:
        print(f"❌ Error in explain_error_action: {type(e).__name__} - {e}")
        traceback.print_exc()
        return ActionResult(error=EXPLAIN_FAILED_MESSAGE, error_kind="unexpected")


def review_readme_action(path=None) -> ActionResult:
    try:
        return ActionResult(data=read_existing_readme(path))
    except (ReadmeNotFoundError, OSError) as e:
        print(f"⚠️ README review failed: {e}")
        return ActionResult(error=README_MISSING_MESSAGE, error_kind="no_result")
