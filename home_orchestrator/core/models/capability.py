"""Backend capability model.

Describes what an execution backend can do, what it costs and whether data
sent to it may leave the device. The Capability Registry negotiates concrete
capability requests against these descriptors.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

REASONING_CAPABILITY = "reasoning"


class PrivacyClass(str, Enum):
    """Where a backend processes data."""

    LOCAL_ONLY = "local_only"
    MAY_LEAVE_DEVICE = "may_leave_device"


class BackendKind(str, Enum):
    """Kind of execution backend."""

    LOCAL_MODEL = "local_model"
    REMOTE_REASONING = "remote_reasoning"
    DEVICE_CONTROL = "device_control"
    OTHER = "other"


class CapabilityDescriptor(BaseModel):
    """Capabilities, cost and latency declared by a backend.

    Attributes:
        backend_id: Unique backend identifier
        capabilities: Supported capability names (e.g. 'light.turn_on')
        substitutes: Capability the backend lacks -> declared capabilities
            that can stand in for it
        cost_per_call: Declared cost per call (arbitrary units, >= 0)
        latency_ms: Declared latency estimate in milliseconds
        privacy_class: Whether data may leave the device
        kind: Backend kind

    Examples:
        >>> CapabilityDescriptor(
        ...     backend_id="ollama",
        ...     capabilities=["text.generate", "intent.classify"],
        ...     cost_per_call=0.0,
        ...     latency_ms=800,
        ...     privacy_class=PrivacyClass.LOCAL_ONLY,
        ... )
    """

    model_config = ConfigDict(frozen=True)

    backend_id: str = Field(..., min_length=1, description="Unique backend identifier")
    capabilities: frozenset[str] = Field(
        default_factory=frozenset,
        description="Supported capability names",
    )
    substitutes: dict[str, tuple[str, ...]] = Field(
        default_factory=dict,
        description="Capability -> declared capabilities that can stand in for it",
    )
    cost_per_call: float = Field(default=0.0, ge=0.0, description="Declared cost per call")
    latency_ms: float = Field(default=0.0, ge=0.0, description="Declared latency estimate")
    privacy_class: PrivacyClass = Field(
        default=PrivacyClass.LOCAL_ONLY,
        description="Whether data may leave the device",
    )
    kind: BackendKind = Field(default=BackendKind.OTHER, description="Backend kind")

    @field_validator("substitutes")
    @classmethod
    def validate_substitutes(cls, v: dict[str, tuple[str, ...]], info) -> dict[str, tuple[str, ...]]:
        """Substitutes must point at declared capabilities."""
        declared = info.data.get("capabilities", frozenset())
        for requested, alternatives in v.items():
            unknown = [alt for alt in alternatives if alt not in declared]
            if unknown:
                raise ValueError(
                    f"Substitutes for '{requested}' are not declared capabilities: {unknown}"
                )
        return v

    def has_capability(self, capability: str) -> bool:
        """Check if a capability is declared natively."""
        return capability in self.capabilities

    def substitute_for(self, capability: str) -> str | None:
        """Return the first declared substitute for a capability, if any."""
        for alternative in self.substitutes.get(capability, ()):
            if alternative in self.capabilities:
                return alternative
        return None

    @property
    def is_local(self) -> bool:
        """True if data never leaves the device."""
        return self.privacy_class == PrivacyClass.LOCAL_ONLY

    @property
    def supports_reasoning(self) -> bool:
        """True if the backend declares open-ended reasoning."""
        return REASONING_CAPABILITY in self.capabilities


class CapabilityRequest(BaseModel):
    """Capabilities requested from a backend during negotiation.

    Attributes:
        required: Must all be present (natively or via substitute)
        optional: Included if present, silently omitted otherwise
        alternatives: Requested capability -> substitutes acceptable to the caller
    """

    model_config = ConfigDict(frozen=True)

    required: tuple[str, ...] = ()
    optional: tuple[str, ...] = ()
    alternatives: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        """Number of requested capabilities."""
        return len(self.required) + len(self.optional)


class NegotiatedCapabilities(BaseModel):
    """Outcome of negotiating a CapabilityRequest against one backend.

    Attributes:
        backend_id: Backend negotiated against
        granted: Requested capabilities the backend declares natively
        substitutions: Requested capability -> substitute that satisfies it
        omitted: Optional capabilities the backend could not provide
    """

    model_config = ConfigDict(frozen=True)

    backend_id: str
    granted: tuple[str, ...] = ()
    substitutions: dict[str, str] = Field(default_factory=dict)
    omitted: tuple[str, ...] = ()

    @property
    def substituted(self) -> bool:
        """True if any requested capability was satisfied by a substitute."""
        return bool(self.substitutions)

    def completeness(self, request: CapabilityRequest) -> float:
        """Fraction of requested capabilities satisfied (substitutes count half)."""
        if request.total == 0:
            return 1.0
        score = len(self.granted) + 0.5 * len(self.substitutions)
        return min(1.0, score / request.total)
