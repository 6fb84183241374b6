"""Prompt templates for the health-plan advisory agents.

Templates use ``str.format`` placeholders. Every template asks for JSON that
is validated against a pydantic schema by the completion service, so the
wording only describes the task; the schema itself is supplied separately.

Attributes:
    GENERATE_QUERIES_PROMPT (str): Diversified search queries for a profile.
    GRADE_DOCUMENTS_PROMPT (str): Relevance grading for a batch of documents.
    REWRITE_QUERY_PROMPT (str): One rewritten query for a diagnosed problem.
    CLASSIFY_INTENT_PROMPT (str): Intent classification plus data extraction.
    ANALYZE_PROMPT (str): Plan compatibility analysis.
    RECOMMEND_PROMPT (str): Final recommendation in markdown.
    CHAT_PROMPT (str): General conversational reply.
"""

from __future__ import annotations

from planmind.state.models import ClientInfo

GENERATE_QUERIES_PROMPT = """You are a health insurance specialist.

Given the client profile below, write between 3 and 5 diversified search
queries to find relevant health plans.

Rules:
1. Each query must have a different focus (profile, coverage, price,
   dependents, general).
2. Prioritize the most important aspects of the profile (age, health
   conditions, dependents). Priority 1 is the most important, 5 the least.
3. Queries must be specific enough for semantic search; avoid generic ones.

CLIENT PROFILE:
{client_info}
"""

GRADE_DOCUMENTS_PROMPT = """You evaluate whether health plan documents are
relevant to a client.

CLIENT PROFILE:
{client_info}

For each document below answer with its id, a grade (relevant,
partially_relevant or irrelevant) and a short reason. A document is relevant
when it covers the client's region, age band and needs; partially relevant
when it matches some of them.

DOCUMENTS:
{documents}
"""

REWRITE_QUERY_PROMPT = """A health plan search did not return enough relevant
documents.

PROBLEM: {problem}
ORIGINAL QUERY: {query}
CLIENT PROFILE:
{client_info}

Write ONE new search query that addresses the problem. Guidance:
- no_results: make the query simpler and broader.
- too_few_results: broaden the query with related terms.
- low_diversity: ask for other operators and plan types.
- off_topic: anchor the query on the client's profile.
"""

CLASSIFY_INTENT_PROMPT = """You route messages for a health plan advisor.

Classify the user's latest message into one intent:
- provide_data: the user shares personal data (age, city, budget, dependents,
  health conditions)
- search_plans: the user wants plan options
- analyze: the user wants plans compared against their profile
- get_price: the user asks about prices
- recommend: the user wants a final recommendation
- chat: small talk or general questions
- modify_data: the user corrects previously given data
- simulate_scenario: the user asks "what if" (add a dependent, change budget
  or location) without committing the change
- finalize: the user wants to end the conversation

Also extract any client data present in the message into extracted_data and,
for simulate_scenario, describe the hypothetical change in scenario_change.
Give a confidence between 0 and 1.

KNOWN CLIENT PROFILE:
{client_info}

RECENT CONVERSATION:
{history}

LATEST MESSAGE:
{message}
"""

ANALYZE_PROMPT = """Compare the health plans below against the client profile.
Score each plan from 0 to 100, list pros and cons and rate compatibility as
high, medium or low. Rank from best to worst and explain the reasoning.

CLIENT PROFILE:
{client_info}

PLANS:
{documents}
"""

RECOMMEND_PROMPT = """Write a clear recommendation in markdown for the client,
based on the ranked analysis below. Name the top plan, up to two alternatives,
highlights, warnings (waiting periods, exclusions) and next steps.

CLIENT PROFILE:
{client_info}

ANALYSIS:
{analysis}
"""

CHAT_PROMPT = """You are a friendly health plan advisor. Answer the user's
message briefly. When useful, invite them to share their age, city, budget and
dependents so you can search plans for them.

KNOWN CLIENT PROFILE:
{client_info}

RECENT CONVERSATION:
{history}

MESSAGE:
{message}
"""


def describe_client_info(info: ClientInfo) -> str:
    """Render a profile as prompt text, one fact per line."""
    parts: list[str] = []
    if info.name:
        parts.append(f"- Name: {info.name}")
    if info.age is not None:
        parts.append(f"- Age: {info.age}")
    if info.location:
        parts.append(f"- Location: {info.location}")
    if info.budget is not None:
        parts.append(f"- Budget: up to {info.budget:,.2f}/month")
    if info.dependents:
        deps = "; ".join(
            ", ".join(
                p
                for p in (
                    dep.relationship,
                    f"{dep.age} years" if dep.age is not None else None,
                )
                if p
            )
            for dep in info.dependents
        )
        parts.append(f"- Dependents: {deps}")
    if info.health_conditions:
        parts.append(f"- Health conditions: {', '.join(info.health_conditions)}")
    if info.preferences:
        parts.append(f"- Preferences: {', '.join(info.preferences)}")
    if info.current_plan:
        parts.append(f"- Current plan: {info.current_plan}")
    return "\n".join(parts) if parts else "No information available"


__all__ = [
    "ANALYZE_PROMPT",
    "CHAT_PROMPT",
    "CLASSIFY_INTENT_PROMPT",
    "GENERATE_QUERIES_PROMPT",
    "GRADE_DOCUMENTS_PROMPT",
    "RECOMMEND_PROMPT",
    "REWRITE_QUERY_PROMPT",
    "describe_client_info",
]
