code_fixer_prompt = """
You are an AI code assistant that helps developers fix and improve code.

You will be given a set of code files, an error message, and a list of tasks to perform.
The issue may span multiple files. You might need to modify one or several files.

## ⚙️ Output Requirements
Return **only valid JSON** in this exact structure:
{
  "correctedFiles": [
    {"name": "exact file name from the input", "correctedCode": "complete corrected file content"}
  ],
  "explanation": "one comprehensive explanation covering all the changes"
}

✅ **Rules**
- Only return files that require correction or improvement. Do not include unchanged files.
- If no file needs a change, return an empty "correctedFiles" list and explain why.
- Use the file names exactly as given. Never invent new files.
- Provide COMPLETE file content - not partial snippets or diffs.
- Keep existing functionality and style intact.
- Always include the "explanation" field.
- Do not write anything outside the JSON object.
"""

readme_prompt = """
You are an AI assistant that helps developers create excellent README.md files for their projects.

You will be given a set of code files from a project. Your task is to generate a comprehensive and well-formatted README.md file in Markdown.

The README should include the following sections:
- A clear and concise project title and description.
- How to get started with the project (e.g., installation, configuration).
- How to use the project.
- An overview of the project structure and key files.

Analyze the provided files to understand the project's purpose, technologies used, and how it works.

Return **only valid JSON** in this exact structure:
{
  "readme": "the full README.md content in Markdown"
}
"""

error_explainer_prompt = """
You are an AI code assistant that explains errors in the context of the code that produced them.

You will be given a piece of code and the error message it produced.
Explain why the error occurred in the context of this code, then fix it.

Return **only valid JSON** in this exact structure:
{
  "correctedCode": "the complete code with the error fixed",
  "explanation": "why the error occurred and what was changed"
}
"""

FIX_ERROR_DIRECTIVE = "- **Fix the Error:** Analyze the error message and the code to identify the root cause and apply a correction."
IMPROVE_ERROR_HANDLING_DIRECTIVE = "- **Improve Error Handling:** Implement more robust error handling (e.g., try-catch blocks, checking for null/undefined values) where appropriate."
ADD_DEBUGGING_DIRECTIVE = "- **Enhance Debugging:** Add or improve logging to make future debugging easier."
ENHANCE_USER_MESSAGES_DIRECTIVE = "- **Improve User Messages:** Refine any user-facing text (e.g., toast notifications, alerts, logs) to be clearer, more helpful, and more professional."


def format_files(files):
    blocks = []
    for f in files:
        blocks.append(f"File: {f.name}\n```\n{f.content}\n```")
    return "\n\n".join(blocks)


def build_task_directives(flags):
    """One directive line per enabled improvement flag"""
    directives = []
    if flags.fix_error:
        directives.append(FIX_ERROR_DIRECTIVE)
    if flags.improve_error_handling:
        directives.append(IMPROVE_ERROR_HANDLING_DIRECTIVE)
    if flags.add_debugging:
        directives.append(ADD_DEBUGGING_DIRECTIVE)
    if flags.enhance_user_messages:
        directives.append(ENHANCE_USER_MESSAGES_DIRECTIVE)
    return directives


def build_correction_prompt(request):
    directives = build_task_directives(request.flags)
    tasks = "\n".join(directives) if directives else "- Review the code against the error message and report whether any change is needed."
    return (
        "Based on the user's request, perform the following tasks:\n"
        f"{tasks}\n\n"
        "Respond with the corrected code for each file that needs changes and a single, "
        "comprehensive explanation covering all the changes you made based on the requested tasks.\n\n"
        f"Error Message:\n{request.error_message}\n\n"
        f"{format_files(request.files)}"
    )


def build_readme_prompt(files):
    return f"Project Files:\n\n{format_files(files)}"


def build_explain_prompt(code, error_message):
    return f"Error Message:\n{error_message}\n\nCode:\n```\n{code}\n```"
