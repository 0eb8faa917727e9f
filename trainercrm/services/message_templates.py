"""Message templates per trigger, rendered with Jinja2."""

import random
from typing import Optional

from jinja2 import BaseLoader, Environment, TemplateSyntaxError

from trainercrm.services.candidate_scorer import Trigger

# Plain-text SMS bodies, nothing to escape
_jinja_env = Environment(loader=BaseLoader(), autoescape=False)


TEMPLATES: dict[Trigger, tuple[str, ...]] = {
    Trigger.HIGH_RISK: (
        "Hey {{ name }}! Haven't heard from you in a while. How are things going?",
        "Hi {{ name }}, checking in to see how you're doing. Any questions or concerns?",
        "{{ name }}, wanted to reach out and see if there's anything I can help with!",
    ),
    Trigger.RE_ENGAGEMENT: (
        "{{ name }}! It's been a few days - how's everything going with your training?",
        "Hey {{ name }}, just checking in! How have you been feeling lately?",
        "{{ name }}, wanted to see how you're progressing. Any updates?",
    ),
    Trigger.MISSED_SESSION: (
        "Hi {{ name }}, noticed you missed your last session. Everything okay?",
        "{{ name }}, hope all is well! Let's get you back on track.",
        "Hey {{ name }}, missed you at your session. Want to reschedule?",
    ),
    Trigger.BOOKING_REMINDER: (
        "{{ name }}, just a reminder about your session tomorrow! Looking forward to it!",
        "Hey {{ name }}! Session coming up soon - see you there!",
        "{{ name }}, excited for your session tomorrow! Let me know if you need anything.",
    ),
    Trigger.MILESTONE: (
        "Amazing work {{ name }}! You've completed {{ sessions }} sessions - that's incredible progress!",
        "{{ name }}, congrats on hitting {{ sessions }} sessions! Keep up the great work!",
        "Wow {{ name }}! {{ sessions }} sessions down - you're crushing it!",
    ),
    Trigger.LONG_INACTIVE: (
        "{{ name }}, it's been a while! Would love to catch up and see how you're doing.",
        "Hey {{ name }}, hoping to hear from you soon. Let's reconnect!",
        "{{ name }}, miss working with you! Let's get back on track together.",
    ),
    Trigger.GENERAL_CHECK_IN: (
        "Hey {{ name }}! Just checking in to see how you're doing.",
        "{{ name }}, hope you're having a great week!",
        "Hi {{ name }}! Wanted to see how things are going for you.",
    ),
}


def templates_for(trigger) -> tuple[str, ...]:
    trigger = Trigger.parse(trigger)
    if trigger in TEMPLATES:
        return TEMPLATES[trigger]
    return TEMPLATES[Trigger.GENERAL_CHECK_IN]


def select_template(trigger, rng: Optional[random.Random] = None) -> str:
    """Pick one variant uniformly at random."""
    rng = rng or random.Random()
    return rng.choice(templates_for(trigger))


def first_name(contact_name: str) -> str:
    parts = (contact_name or "").split()
    return parts[0] if parts else "there"


def render_message(template: str, contact_name: str, sessions: int = 0) -> str:
    try:
        tpl = _jinja_env.from_string(template)
    except TemplateSyntaxError as e:
        raise ValueError(f"Template syntax error: {e}") from e
    return tpl.render(name=first_name(contact_name), sessions=sessions or 0)
