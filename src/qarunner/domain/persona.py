"""Behavioural profiles that bias planning; orthogonal to execution semantics."""

from __future__ import annotations

from enum import Enum


class Persona(str, Enum):
    """Named planning persona with its sampling temperature."""

    STANDARD = "STANDARD"
    CHAOS = "CHAOS"
    HACKER = "HACKER"
    PERFORMANCE_HAWK = "PERFORMANCE_HAWK"

    @property
    def temperature(self) -> float:
        return _TEMPERATURES[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    def default_goal(self) -> str:
        """Exploratory goal used when a run is created without goals."""
        return _DEFAULT_GOALS[self]

    @classmethod
    def parse(cls, value: "str | Persona | None") -> "Persona":
        """Resolve a case-insensitive name, falling back to STANDARD for blanks."""
        if isinstance(value, Persona):
            return value
        if value is None or not str(value).strip():
            return cls.STANDARD
        normalised = str(value).strip().upper().replace("-", "_").replace(" ", "_")
        return cls(normalised)


_TEMPERATURES = {
    Persona.STANDARD: 0.2,
    Persona.CHAOS: 0.6,
    Persona.HACKER: 0.4,
    Persona.PERFORMANCE_HAWK: 0.3,
}

_DESCRIPTIONS = {
    Persona.STANDARD: "Methodical auditor producing deterministic, reproducible steps.",
    Persona.CHAOS: "Chaotic explorer trying unusual inputs and rapid interactions.",
    Persona.HACKER: "Security researcher probing inputs and exposed data.",
    Persona.PERFORMANCE_HAWK: "Performance specialist capturing Core Web Vitals along the way.",
}

_DEFAULT_GOALS = {
    Persona.STANDARD: (
        "Thoroughly explore and test the website - navigate through all main sections, "
        "interact with forms and buttons, verify links work, and check overall functionality."
    ),
    Persona.CHAOS: (
        "Explore the website chaotically - try unusual inputs, rapid interactions, "
        "edge cases, and unexpected user flows to find stability issues."
    ),
    Persona.HACKER: (
        "Perform a security assessment of the website - check for common vulnerabilities "
        "like XSS, injection points, exposed sensitive data, and missing security headers."
    ),
    Persona.PERFORMANCE_HAWK: (
        "Thoroughly explore the website and measure performance metrics. Navigate through "
        "main pages, interact with key UI elements, and capture Core Web Vitals after each "
        "navigation and interaction."
    ),
}


__all__ = ["Persona"]
