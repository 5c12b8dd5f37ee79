"""
Data Models Module

Pydantic models for request validation and for the values passed between
the gateway's components:

- Chat models (conversation messages and the /api/chat request body)
- Identity models (caller identity extracted from a verified Access token)
- Inference models (AI Gateway routing options)
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Chat Models
# ============================================================================

class ChatMessage(BaseModel):
    """Single conversation entry, in conversation order."""
    role: Literal["system", "user", "assistant"] = Field(..., description="Message author role")
    content: str = Field(..., description="Message text")


class ChatRequest(BaseModel):
    """Request body of POST /api/chat."""
    messages: List[ChatMessage] = Field(
        default_factory=list,
        description="Conversation so far, oldest first",
    )


# ============================================================================
# Identity Models
# ============================================================================

class Identity(BaseModel):
    """Caller identity taken from verified token claims."""
    model_config = ConfigDict(frozen=True)

    email: Optional[str] = Field(None, description="Email claim, if present")
    subject: Optional[str] = Field(None, description="Subject (sub) claim, if present")

    @property
    def display(self) -> str:
        """Best available label for the caller."""
        return self.email or self.subject or "authenticated user"


# ============================================================================
# Inference Models
# ============================================================================

class GatewayOptions(BaseModel):
    """Routing parameters for sending inference through an AI Gateway."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="AI Gateway id", min_length=1)
    skip_cache: bool = Field(default=False, description="Bypass the gateway cache")
    cache_ttl: Optional[int] = Field(None, description="Cache time-to-live in seconds", ge=0)
