"""
Code Fixer Package
AI-assisted code fixing and README generation behind a FastAPI service
"""

__version__ = "1.0.0"
__author__ = "Code Fixer Team"

# Import main components for easy access
from .models import (
    TokenManager, FileRegistry, SessionState,
    code_fixer_agent, readme_agent, error_explainer_agent
)
from .prompts import (
    code_fixer_prompt, readme_prompt, error_explainer_prompt,
    build_correction_prompt
)
from .functions import (
    validate_correction_request, build_correction_request,
    request_correction, resolve_corrections, merge_corrected_files,
    generate_readme, read_existing_readme, fixed_file_name,
    fix_code_action, generate_readme_action
)

__all__ = [
    'TokenManager', 'FileRegistry', 'SessionState',
    'code_fixer_agent', 'readme_agent', 'error_explainer_agent',
    'code_fixer_prompt', 'readme_prompt', 'error_explainer_prompt',
    'build_correction_prompt',
    'validate_correction_request', 'build_correction_request',
    'request_correction', 'resolve_corrections', 'merge_corrected_files',
    'generate_readme', 'read_existing_readme', 'fixed_file_name',
    'fix_code_action', 'generate_readme_action'
]
