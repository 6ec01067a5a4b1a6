from advisor_core.domain.evaluation import Criterion, Subject
from advisor_core.domain.models import ModelInvocation, PriorMessage
from advisor_core.prompts import build_advisor_request, build_evaluation_request, display_name


def test_advisor_request_lists_other_participants():
    invocation = ModelInvocation(
        participant_id="toxic",
        other_participant_ids=["prisma", "ghost"],
        prior_messages=[PriorMessage(role="user", content="hi"), PriorMessage(role="user", content="[Prisma]: hey")],
        subject_context="Deck: pet sitters",
    )
    req = build_advisor_request(invocation, "advisor-chat")
    system = req.messages[0]
    assert system.role == "system"
    assert "You are Toxic" in system.content
    assert "Prisma (Product Manager), ghost (advisor)" in system.content
    assert "Deck: pet sitters" in system.content
    assert "concise" in system.content
    assert [m.content for m in req.messages[1:]] == ["hi", "[Prisma]: hey"]
    assert req.meta == {"participant_id": "toxic", "response_mode": "concise"}
    assert req.response_format is None


def test_advisor_request_detailed_mode():
    invocation = ModelInvocation(
        participant_id="prisma",
        other_participant_ids=[],
        prior_messages=[],
        response_mode="detailed",
    )
    system = build_advisor_request(invocation, "advisor-chat").messages[0].content
    assert "no one else" in system
    assert "detailed" in system


def test_evaluation_request_renders_subject():
    subject = Subject(id="card-9", content={"title": "Dog walking"}, metadata={"phase": "research"})
    criterion = Criterion("uniqueness", 0.25, "toxic", "Uniqueness of the insights.")
    req = build_evaluation_request(subject, criterion, "evaluator")
    task = req.messages[-1].content
    assert '"title": "Dog walking"' in task
    assert "- phase: research" in task
    assert 'criterion "uniqueness"' in task
    assert "between 1 and 10" in task
    assert req.response_format == "json_object"
    assert req.meta["criterion_key"] == "uniqueness"


def test_display_name_falls_back_to_id():
    assert display_name("techpriest") == "Tech Priest"
    assert display_name("someone") == "someone"
