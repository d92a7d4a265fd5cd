import json
import os
import uuid
import tiktoken
from dotenv import load_dotenv, find_dotenv
from agents import Agent, OpenAIChatCompletionsModel, AsyncOpenAI, ModelSettings

from .schemas import UploadedFile, ImprovementFlags, CorrectionResult, FileInput

# Load environment variables
_ = load_dotenv(find_dotenv())
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/openai/")
README_PATH = os.getenv("README_PATH", os.path.join(os.getcwd(), "README.md"))

MAX_FILES = 10

LANGUAGE_BY_EXTENSION = {
    'py': 'python',
    'bat': 'batch',
    'cmd': 'batch',
    'sh': 'shell',
    'bash': 'shell',
    'js': 'javascript',
    'jsx': 'javascript',
    'mjs': 'javascript',
    'ts': 'typescript',
    'tsx': 'typescript',
    'json': 'json',
    'md': 'markdown',
    'html': 'html',
    'htm': 'html',
    'css': 'css',
    'txt': 'plaintext',
}
ACCEPTED_FILENAMES = {"Makefile", "Dockerfile"}

# Initialize external client and model
external_client: AsyncOpenAI = AsyncOpenAI(
    api_key=GEMINI_API_KEY,
    base_url=GEMINI_BASE_URL,
)

gemini_llm_model: OpenAIChatCompletionsModel = OpenAIChatCompletionsModel(
    model=GEMINI_MODEL,
    openai_client=external_client
)


def get_extension(file_name):
    """Extension after the last dot, lowercased; empty when there is none"""
    base = os.path.basename(file_name)
    if '.' not in base.strip('.'):
        return ""
    return base.rsplit('.', 1)[-1].lower()


def detect_language(file_name):
    """Get highlighting language from extension"""
    return LANGUAGE_BY_EXTENSION.get(get_extension(file_name), 'plaintext')


def is_accepted_file(file_name):
    if os.path.basename(file_name) in ACCEPTED_FILENAMES:
        return True
    return get_extension(file_name) in LANGUAGE_BY_EXTENSION


class FileRegistryError(ValueError):
    """Raised when an upload batch is rejected"""


class TokenManager:
    """Token counting for prompt size reporting"""

    def __init__(self):
        self.tokens_used = 0
        self._tokenizer = None

    @property
    def tokenizer(self):
        # Encodings are fetched on first use, not at import
        if self._tokenizer is None:
            try:
                self._tokenizer = tiktoken.get_encoding("cl100k_base")
            except Exception:
                self._tokenizer = tiktoken.get_encoding("gpt2")
        return self._tokenizer

    def count_tokens(self, text):
        """Count tokens in text"""
        try:
            if text is None:
                return 0
            if isinstance(text, dict):
                text = json.dumps(text)
            return len(self.tokenizer.encode(str(text)))
        except Exception:
            return max(1, len(str(text)) // 4)

    def add_tokens(self, tokens):
        """Add tokens to usage counter"""
        self.tokens_used += tokens
        print(f"📊 Prompt tokens sent so far: {self.tokens_used}")


class FileRegistry:
    """Ordered collection of uploaded files, keyed by name and capped at MAX_FILES"""

    def __init__(self, max_files=MAX_FILES):
        self.max_files = max_files
        self._files = {}

    def __len__(self):
        return len(self._files)

    def __contains__(self, name):
        return name in self._files

    def names(self):
        return list(self._files.keys())

    def get(self, name):
        return self._files.get(name)

    def to_list(self):
        return list(self._files.values())

    def add_files(self, files):
        """Add a batch of files. The whole batch is rejected if any check fails."""
        incoming = {}
        for f in files:
            if isinstance(f, dict):
                f = FileInput(**f)
            if not is_accepted_file(f.name):
                raise FileRegistryError(f"Unsupported file type: {f.name}")
            incoming[f.name] = f

        new_names = [name for name in incoming if name not in self._files]
        if len(self._files) + len(new_names) > self.max_files:
            raise FileRegistryError(f"You can upload a maximum of {self.max_files} files.")

        added = []
        for name, f in incoming.items():
            uploaded = UploadedFile(name=name, content=f.content, language=detect_language(name))
            self._files[name] = uploaded
            added.append(uploaded)
        return added

    def remove_file(self, name):
        """Remove a file by name; returns False when it was not registered"""
        return self._files.pop(name, None) is not None

    def clear(self):
        self._files = {}

    @classmethod
    def from_list(cls, files, max_files=MAX_FILES):
        registry = cls(max_files=max_files)
        for f in files or []:
            uploaded = f if isinstance(f, UploadedFile) else UploadedFile(**f)
            registry._files[uploaded.name] = uploaded
        return registry


class SessionState:
    """Application state for one user session"""

    def __init__(self, session_id=None):
        self.session_id = session_id or str(uuid.uuid4())
        self.files = FileRegistry()
        self.error_message = ""
        self.flags = ImprovementFlags()
        self.correction_result = None
        self.readme = None

    def reset_results(self):
        """Drop results computed against a previous file set"""
        self.correction_result = None
        self.readme = None

    def to_dict(self):
        return {
            "session_id": self.session_id,
            "files": [f.model_dump() for f in self.files.to_list()],
            "error_message": self.error_message,
            "flags": self.flags.model_dump(),
            "correction_result": self.correction_result.model_dump(by_alias=True) if self.correction_result else None,
            "readme": self.readme,
        }

    @classmethod
    def from_dict(cls, data):
        state = cls(session_id=data.get("session_id"))
        state.files = FileRegistry.from_list(data.get("files", []))
        state.error_message = data.get("error_message", "") or ""
        state.flags = ImprovementFlags(**(data.get("flags") or {}))
        if data.get("correction_result"):
            state.correction_result = CorrectionResult.model_validate(data["correction_result"])
        state.readme = data.get("readme")
        return state

    def get_context_summary(self):
        """Get summary of current session state"""
        return {
            "session_id": self.session_id,
            "files": [
                {"name": f.name, "language": f.language, "size": len(f.content)}
                for f in self.files.to_list()
            ],
            "error_message": self.error_message,
            "flags": self.flags.model_dump(by_alias=True),
            "has_correction": self.correction_result is not None,
            "corrected_files": [c.name for c in self.correction_result.corrected_files] if self.correction_result else [],
            "has_readme": bool(self.readme),
        }


# -------------------
# All Agents Defined Here
# -------------------

from .prompts import code_fixer_prompt, readme_prompt, error_explainer_prompt


gemini_model_settings = ModelSettings(
    temperature=0.2,
)

code_fixer_agent = Agent(
    name="CodeFixer",
    instructions=code_fixer_prompt,
    model=gemini_llm_model,
    model_settings=gemini_model_settings
)

readme_agent = Agent(
    name="ReadmeWriter",
    instructions=readme_prompt,
    model=gemini_llm_model
)

error_explainer_agent = Agent(
    name="ErrorExplainer",
    instructions=error_explainer_prompt,
    model=gemini_llm_model,
    model_settings=gemini_model_settings
)
