from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class AnalysisState(BaseModel):
    """State carried through the validated rewrite workflow."""

    # Request
    query: str = Field(..., description="The SQL query submitted for analysis.")
    schema_text: Optional[str] = Field(None, description="User-supplied schema text, included verbatim in prompts.")
    explain_text: Optional[str] = Field(None, description="User-supplied execution plan text.")

    # Generator output for the current attempt
    generation: Optional[Dict[str, Any]] = Field(None, description="Normalized analyzer reply.")
    generation_error: Optional[str] = None
    generator_calls: int = 0

    # Validator output for the current attempt
    validator_valid: bool = False
    validator_explanation: Optional[str] = None
    validator_calls: int = 0

    # Terminal state
    outcome: Optional[str] = Field(None, description="passed or failed once the workflow ends.")
    result: Optional[Dict[str, Any]] = Field(None, description="Serialized AnalysisResult fields.")
    failure_recorded: bool = False

    visited: List[str] = Field(default_factory=list, description="Node names in execution order.")
