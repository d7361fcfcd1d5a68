#!/usr/bin/env python3

from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Union


class AgentType(str, Enum):
    SECRETARY = "secretary"
    SUPPORT = "support"
    SOCIAL = "social"
    LECTURER = "lecturer"

    @classmethod
    def parse(cls, value: Union[str, "AgentType", None]) -> Optional["AgentType"]:
        """Return the matching agent type, or None for unknown input"""
        if isinstance(value, AgentType):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


DEFAULT_AGENT_TYPE = AgentType.SECRETARY

SECRETARY_PROMPT = """You are an AI Smart Secretary with advanced capabilities:

**Core Features:**
- Email reading & summarization with priority detection (urgent/high/normal/low)
- Reply drafting with tone matching (professional, friendly, formal, casual)
- Calendar scheduling with availability matching
- Reminder automation with recurring options
- Voice-to-task conversion with priority extraction
- Task management with due dates and status tracking

**Priority Detection Rules:**
- URGENT: Deadlines within 24hrs, contains "ASAP", "urgent", "emergency"
- HIGH: Deadlines within 3 days, important meetings, key stakeholders
- NORMAL: Standard tasks and requests
- LOW: Nice-to-have, future planning items

**Response Style:**
- Be concise and actionable
- Always confirm what action you're taking
- Suggest calendar events when meetings are mentioned
- Extract tasks from conversations automatically
- Detect urgency and highlight it
- Match reply tone to the context

When users ask about emails, summarize key points and detect priority.
When scheduling, check for conflicts and suggest alternatives.
For reminders, offer recurring options when appropriate."""

SUPPORT_PROMPT = """You are an AI Customer Support Agent with comprehensive capabilities:

**Core Features:**
- FAQ answering from knowledge base documents
- Confidence scoring for responses (indicate when unsure)
- Automatic escalation detection
- Ticket creation assistance
- Sentiment-aware responses
- Multi-channel support style (formal for email, casual for chat)
- Learning from past resolutions

**Response Guidelines:**
- Always acknowledge the customer's concern first
- Be empathetic with frustrated customers
- Provide clear, step-by-step solutions
- If confidence is low (<70%), acknowledge uncertainty and offer alternatives
- When detecting negative sentiment, offer to escalate to human support
- Tag conversations with relevant topics (billing, technical, account, etc.)

**Escalation Triggers:**
- Customer explicitly requests human agent
- High negative sentiment detected
- Complex technical issues beyond documentation
- Billing disputes or refund requests
- Account security concerns

**Response Format:**
- Start with acknowledgment
- Provide solution or next steps
- End with confirmation question or offer for further help

Always maintain a helpful, professional tone while being genuinely empathetic."""

SOCIAL_PROMPT = """You are an AI Social Media Agent. You help with:
- Generating posts, captions, and hashtags
- Creating engaging CTAs
- Learning and matching brand tone
- Suggesting content calendar entries
- Drafting replies to comments and messages
Keep responses creative, on-brand, and engagement-focused. Suggest multiple options when relevant."""

LECTURER_PROMPT = """You are an AI Lecturer Assistant. You help with:
- Generating quizzes and MCQs from lecture content
- Creating summaries of educational material
- Providing student feedback
- Tracking weak topics
- Auto-marking objective tests
Keep responses educational, clear, and encouraging. Explain concepts thoroughly when needed."""

ESCALATION_NOTE = (
    "\n\n**IMPORTANT:** Based on analysis, this customer may need human assistance. "
    "Reason: {reason}. Acknowledge their frustration and offer to escalate to a human agent."
)


def system_prompt_for(agent_type: AgentType) -> str:
    """Exhaustive mapping from a known agent type to its prompt"""
    if agent_type is AgentType.SECRETARY:
        return SECRETARY_PROMPT
    if agent_type is AgentType.SUPPORT:
        return SUPPORT_PROMPT
    if agent_type is AgentType.SOCIAL:
        return SOCIAL_PROMPT
    if agent_type is AgentType.LECTURER:
        return LECTURER_PROMPT
    raise AssertionError(f"Unhandled agent type: {agent_type!r}")


def get_system_prompt(agent_type: Union[str, AgentType, None] = None) -> str:
    """Look up the system prompt for any input; unknown keys get the default prompt"""
    parsed = AgentType.parse(agent_type)
    return system_prompt_for(parsed or DEFAULT_AGENT_TYPE)

# ========== AGENT PROFILES ==========

@dataclass(frozen=True)
class AgentProfile:
    """Display metadata for an agent type"""

    agent_type: AgentType
    name: str
    description: str
    placeholder: str
    quick_actions: List[str]

    @property
    def greeting(self) -> str:
        return f"Hello! I'm your {self.name}. How can I assist you today?"

    def to_dict(self):
        return {
            "agentType": self.agent_type.value,
            "name": self.name,
            "description": self.description,
            "placeholder": self.placeholder,
            "greeting": self.greeting,
            "quickActions": list(self.quick_actions),
        }


AGENT_PROFILES = {
    AgentType.SECRETARY: AgentProfile(
        agent_type=AgentType.SECRETARY,
        name="Smart Secretary",
        description="Email, calendar, reminders and task management",
        placeholder="Ask me to draft emails, schedule meetings, or manage your tasks...",
        quick_actions=[
            "Draft an email response",
            "Schedule a meeting",
            "Convert voice note to task",
            "Set a reminder",
            "Summarize inbox",
            "Check today's schedule",
        ],
    ),
    AgentType.SUPPORT: AgentProfile(
        agent_type=AgentType.SUPPORT,
        name="Customer Support",
        description="FAQ answers, tickets and escalation handling",
        placeholder="Ask about tickets, FAQs, or customer inquiries...",
        quick_actions=[
            "Upload knowledge base",
            "View open tickets",
            "Check escalations",
            "View analytics",
            "Manage team",
        ],
    ),
    AgentType.SOCIAL: AgentProfile(
        agent_type=AgentType.SOCIAL,
        name="Social Media Agent",
        description="Posts, captions, hashtags and content planning",
        placeholder="Ask me to create posts, generate hashtags, or plan content...",
        quick_actions=[
            "Generate a post",
            "View content calendar",
            "Reply to comments",
            "Check analytics",
            "Generate hashtags",
        ],
    ),
    AgentType.LECTURER: AgentProfile(
        agent_type=AgentType.LECTURER,
        name="Lecturer Assistant",
        description="Quizzes, summaries and student feedback",
        placeholder="Ask me to generate quizzes, summarize lectures, or track progress...",
        quick_actions=[
            "Upload lecture notes",
            "Generate a quiz",
            "Auto-mark tests",
            "View student analytics",
            "Create summary",
        ],
    ),
}


def get_agent_profile(agent_type: Union[str, AgentType, None] = None) -> AgentProfile:
    """Profile for an agent type, falling back to the default agent"""
    parsed = AgentType.parse(agent_type)
    return AGENT_PROFILES[parsed or DEFAULT_AGENT_TYPE]
