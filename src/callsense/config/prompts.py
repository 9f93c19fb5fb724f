"""LLM prompt templates for pipeline stages."""

import json

# Curly braces in JSON examples are escaped as {{ }} for str.format
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY a valid JSON object.
- Do NOT include any thinking, reasoning, or explanation.
- Do NOT use markdown code blocks.
- Start your response directly with the opening brace
- No text before or after the JSON."""

CALLER_ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert behavioral analyst. Always respond with valid JSON." + JSON_ONLY_INSTRUCTION
)

CALLER_ANALYSIS_USER_PROMPT = """Analyze transcript. Score caller 0-1 on params, extract facts.

TRANSCRIPT (analyze this):
{transcript}

PARAMS TO SCORE: {params}

FACTS TO FIND: {facts}

Return compact JSON:
{{"scores":{{"PARAM-ID":{{"s":0.75,"c":0.8}},...}},"memories":[{{"cat":"FACT","key":"k","val":"v","c":0.9}},...]}}"""

AGENT_SCORING_SYSTEM_PROMPT = (
    "You are an expert at evaluating conversational AI behavior. Always respond with valid JSON. "
    "Keep evidence arrays brief (1-2 short quotes max per parameter)." + JSON_ONLY_INSTRUCTION
)

AGENT_SCORING_USER_PROMPT = """Score AGENT behavior 0-1 (0=poor, 1=excellent).

TRANSCRIPT:
{transcript}

BEHAVIORS: {params}

Return compact JSON:
{{"scores":{{"PARAM-ID":{{"s":0.75,"c":0.8,"e":["short quote"]}},...}}}}"""

ADAPT_SYSTEM_PROMPT = (
    "You are an expert at personalizing AI behaviour based on caller profiles. "
    "Always respond with valid JSON." + JSON_ONLY_INSTRUCTION
)

ADAPT_USER_PROMPT = """Compute agent behavior targets (0-1) for next call based on caller profile.

TRANSCRIPT:
{transcript}

CALLER SCORES: {scores}
{profile}
PARAMS: {params}

Return compact JSON:
{{"targets":{{"PARAM-ID":{{"v":0.65,"c":0.8}},...}}}}"""


def build_caller_analysis_prompt(
    transcript: str,
    measure_params: list[tuple[str, str]],
    learn_actions: list[tuple[str, str]],
    transcript_limit: int = 4000,
) -> str:
    """Build the batched MEASURE + LEARN prompt (one completion per call).

    Args:
        transcript: Full call transcript.
        measure_params: (parameter_id, name) pairs to score.
        learn_actions: (category, description) pairs of facts to look for.
        transcript_limit: Max transcript characters to include.

    Returns:
        Rendered user prompt.
    """
    return CALLER_ANALYSIS_USER_PROMPT.format(
        transcript=transcript[:transcript_limit],
        params="|".join(f"{pid}:{name}" for pid, name in measure_params),
        facts="|".join(f"{category}:{description}" for category, description in learn_actions),
    )


def build_agent_scoring_prompt(
    transcript: str,
    agent_params: list[tuple[str, str]],
    transcript_limit: int = 4000,
) -> str:
    """Build the batched agent behaviour scoring prompt."""
    return AGENT_SCORING_USER_PROMPT.format(
        transcript=transcript[:transcript_limit],
        params="|".join(f"{pid}:{name}" for pid, name in agent_params),
    )


def build_adapt_prompt(
    transcript: str,
    call_scores: dict[str, float],
    caller_profile: dict | None,
    target_params: list[tuple[str, str]],
    transcript_limit: int = 2500,
) -> str:
    """Build the prompt that asks for next-call behaviour targets."""
    profile_str = json.dumps(caller_profile)[:500] if caller_profile else ""
    return ADAPT_USER_PROMPT.format(
        transcript=transcript[:transcript_limit],
        scores="|".join(f"{pid}:{score:.2f}" for pid, score in call_scores.items()),
        profile=f"PROFILE: {profile_str}\n" if profile_str else "",
        params="|".join(f"{pid}:{name}" for pid, name in target_params),
    )
