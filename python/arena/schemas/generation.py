"""Generation request Pydantic schemas.

Request bodies use the camelCase field names browsers send; Python code uses
the snake_case attribute names.
"""

from pydantic import BaseModel, ConfigDict, Field


class ReferenceImageIn(BaseModel):
    """Inline reference image: base64 bytes plus MIME type."""

    mime_type: str = Field(alias="mimeType")
    base64_data: str = Field(alias="base64Data")

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class GenerateRequest(BaseModel):
    """Request schema for POST /generate and POST /generate/stream.

    - provider: huggingface | openai | anthropic | google
    - model_id: may carry a ":provider" routing suffix (Hugging Face only)
    - provider_hint, provider_candidates, bill_to: Hugging Face only
    - skill_content: max 20,000 chars after trimming
    - prompt: defaults to the shared design prompt when omitted
    """

    provider: str | None = None
    model_id: str | None = Field(default=None, alias="modelId")
    api_key: str | None = Field(default=None, alias="apiKey")
    provider_hint: str | None = Field(default=None, alias="providerHint")
    provider_candidates: list[str] | None = Field(default=None, alias="providerCandidates")
    bill_to: str | None = Field(default=None, alias="billTo")
    prompt: str | None = None
    baseline_html: str | None = Field(default=None, alias="baselineHtml")
    skill_content: str | None = Field(default=None, alias="skillContent")
    reference_image: ReferenceImageIn | None = Field(default=None, alias="referenceImage")
    task_id: str | None = Field(default=None, alias="taskId")

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

