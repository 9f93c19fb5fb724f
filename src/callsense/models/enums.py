"""Enumeration types for the pipeline models."""

from enum import Enum


class StageName(str, Enum):
    """Pipeline stages with a registered executor."""

    EXTRACT = "EXTRACT"
    SCORE_AGENT = "SCORE_AGENT"
    AGGREGATE = "AGGREGATE"
    REWARD = "REWARD"
    ADAPT = "ADAPT"
    SUPERVISE = "SUPERVISE"
    COMPOSE = "COMPOSE"


class PipelineMode(str, Enum):
    """Run mode: prep excludes COMPOSE, prompt includes it."""

    PREP = "prep"
    PROMPT = "prompt"


class Engine(str, Enum):
    """Inference backend selected for a run."""

    MOCK = "mock"
    OLLAMA = "ollama"


class OutputType(str, Enum):
    """Output category a rule spec contributes to."""

    MEASURE = "MEASURE"
    MEASURE_AGENT = "MEASURE_AGENT"
    LEARN = "LEARN"
    AGGREGATE = "AGGREGATE"
    REWARD = "REWARD"
    ADAPT = "ADAPT"
    SUPERVISE = "SUPERVISE"
    COMPOSE = "COMPOSE"
    PIPELINE = "PIPELINE"


class SpecScope(str, Enum):
    """Where a rule spec applies."""

    SYSTEM = "SYSTEM"
    DOMAIN = "DOMAIN"


class MemoryCategory(str, Enum):
    """Categories of durable caller facts."""

    FACT = "FACT"
    PREFERENCE = "PREFERENCE"
    EVENT = "EVENT"
    TOPIC = "TOPIC"
    RELATIONSHIP = "RELATIONSHIP"
    CONTEXT = "CONTEXT"


class AIErrorCode(str, Enum):
    """Classification of completion provider failures."""

    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    CONTENT_POLICY = "content_policy"
    PARSE = "parse"
    NETWORK = "network"
    MODEL = "model"
    UNKNOWN = "unknown"
