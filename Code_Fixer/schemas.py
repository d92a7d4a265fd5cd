"""
Schemas module for Code Fixer
Pydantic models shared by the agents, the action wrappers and the API
"""

from typing import List, Optional, Any
from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for camelCase wire models that also accept snake_case names"""
    model_config = ConfigDict(populate_by_name=True)


class FileInput(WireModel):
    name: str = Field(..., min_length=1, description="The name of the file.")
    content: str = Field(..., description="The content of the file.")


class UploadedFile(FileInput):
    language: str = "plaintext"


class ImprovementFlags(WireModel):
    fix_error: bool = Field(True, alias="fixError")
    improve_error_handling: bool = Field(False, alias="improveErrorHandling")
    add_debugging: bool = Field(False, alias="addDebugging")
    enhance_user_messages: bool = Field(False, alias="enhanceUserMessages")


class CorrectionRequest(ImprovementFlags):
    files: List[FileInput] = Field(default_factory=list)
    error_message: str = Field("", alias="errorMessage")

    @property
    def flags(self) -> ImprovementFlags:
        return ImprovementFlags(
            fix_error=self.fix_error,
            improve_error_handling=self.improve_error_handling,
            add_debugging=self.add_debugging,
            enhance_user_messages=self.enhance_user_messages,
        )


class CorrectedFile(WireModel):
    name: str
    corrected_code: str = Field(..., alias="correctedCode")


class CorrectionResult(WireModel):
    corrected_files: List[CorrectedFile] = Field(default_factory=list, alias="correctedFiles")
    explanation: str


class ReadmeRequest(WireModel):
    files: List[FileInput] = Field(default_factory=list)


class ReadmeResult(WireModel):
    readme: str


class ExplainErrorInput(WireModel):
    code: str = ""
    error_message: str = Field("", alias="errorMessage")


class ExplainErrorResult(WireModel):
    corrected_code: str = Field(..., alias="correctedCode")
    explanation: str


class ActionResult(WireModel):
    data: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[str] = Field(None, alias="errorKind")

    @property
    def ok(self) -> bool:
        return self.error is None
