#!/usr/bin/env python3

from typing import Dict, List, Optional, Tuple

from models import SupportAnalysis

NEGATIVE_WORDS = [
    "angry", "frustrated", "upset", "disappointed", "terrible", "awful", "hate",
    "worst", "horrible", "furious", "annoyed", "unacceptable", "ridiculous", "useless",
]
POSITIVE_WORDS = [
    "thank", "great", "excellent", "amazing", "wonderful", "perfect", "love",
    "happy", "satisfied", "helpful", "appreciate", "awesome", "fantastic",
]
URGENT_WORDS = ["urgent", "asap", "immediately", "emergency", "critical", "now", "help"]

ESCALATION_TRIGGERS = [
    "speak to human", "talk to agent", "real person", "manager", "supervisor",
    "escalate", "not helpful", "speak to someone", "human agent", "live agent",
]

ESCALATION_CONFIDENCE = 75


def analyze_sentiment(text: str) -> Tuple[str, int]:
    """Keyword sentiment score; returns (sentiment, confidence)"""
    lower_text = text.lower()

    neg_score = sum(2 for word in NEGATIVE_WORDS if word in lower_text)
    pos_score = sum(2 for word in POSITIVE_WORDS if word in lower_text)
    # urgency counts against the customer's mood
    neg_score += sum(1 for word in URGENT_WORDS if word in lower_text)

    total_score = pos_score + neg_score
    if pos_score > neg_score + 2:
        return "positive", min(95, 60 + pos_score * 5)
    if neg_score > pos_score + 2:
        return "negative", min(95, 60 + neg_score * 5)
    return "neutral", 40 + min(30, total_score * 3)


def check_escalation(sentiment: str, confidence: int, message_text: str) -> Tuple[bool, str]:
    """Decide whether a human should take over"""
    lower_text = message_text.lower()
    for trigger in ESCALATION_TRIGGERS:
        if trigger in lower_text:
            return True, "Customer requested human assistance"

    if sentiment == "negative" and confidence >= ESCALATION_CONFIDENCE:
        return True, "High negative sentiment detected"

    return False, ""


def analyze_conversation(messages: List[Dict[str, str]]) -> Optional[SupportAnalysis]:
    """Analyze the last user message of a conversation, if any"""
    last_user = next((m for m in reversed(messages) if m.get("role") == "user"), None)
    if last_user is None:
        return None

    content = last_user.get("content", "")
    sentiment, confidence = analyze_sentiment(content)
    should_escalate, reason = check_escalation(sentiment, confidence, content)
    return SupportAnalysis(
        sentiment=sentiment,
        confidence=confidence,
        should_escalate=should_escalate,
        escalation_reason=reason,
    )
