import pytest

from app.features.digest_delivery.domain import Category
from app.features.digest_delivery.services import DigestScriptGenerator, build_digest
from app.features.digest_delivery.services.digest_service import MAX_DIGEST_SENDERS
from tests.fakes import USER_ID, InMemoryRuleRepository, InMemorySenderRepository, make_sender


def test_empty_bucket_produces_guidance_script():
    digest = build_digest(USER_ID, [], [], "mailieAI")

    assert digest.is_empty
    assert digest.script == (
        "Hey! mailieAI here. You haven't marked any email senders as 'call-me' yet. "
        "Go categorize some important senders first."
    )
    assert (digest.emails_analyzed, digest.important_found, digest.meetings_found) == (0, 0, 0)


def test_single_sender_names_the_subject():
    senders = [make_sender("alice@acme.com", name="Alice", subject="Contract signed")]

    digest = build_digest(USER_ID, senders, [], "mailieAI")

    assert digest.script == (
        "Hey! mailieAI here. Latest from Alice: Contract signed. That's your priority."
    )
    assert digest.important_found == 1


def test_two_to_three_senders_are_listed_by_name():
    senders = [
        make_sender("alice@acme.com", name="Alice", minutes_ago=1),
        make_sender("bob@acme.com", name="Bob", minutes_ago=2),
        make_sender("carol@acme.com", name="Carol", minutes_ago=3),
    ]

    digest = build_digest(USER_ID, senders, [], "mailieAI")

    assert digest.script == (
        "Hey! mailieAI here. Updates from Alice, Bob, Carol. Check these 3 important messages."
    )


def test_large_bucket_is_capped_to_most_recent_senders():
    senders = [
        make_sender(f"person{i}@acme.com", name=f"Person {i}", minutes_ago=i) for i in range(7)
    ]

    digest = build_digest(USER_ID, list(reversed(senders)), [], "mailieAI")

    assert len(digest.entries) == MAX_DIGEST_SENDERS
    assert [entry.name for entry in digest.entries][:2] == ["Person 0", "Person 1"]
    assert digest.emails_analyzed == 7
    assert digest.important_found == 5
    assert digest.script == (
        "Hey! mailieAI here. Priority updates from Person 0 and Person 1, "
        "+3 other important contacts."
    )


def test_only_call_me_senders_with_messages_are_included():
    senders = [
        make_sender("alice@acme.com", name="Alice"),
        make_sender("news@letters.io", category=Category.NEWSLETTER),
        make_sender("quiet@acme.com", name="Quiet", message_count=0),
    ]

    digest = build_digest(USER_ID, senders, [], "mailieAI")

    assert [entry.name for entry in digest.entries] == ["Alice"]


def test_meeting_subjects_are_counted():
    senders = [
        make_sender("alice@acme.com", name="Alice", subject="Zoom tomorrow?", minutes_ago=1),
        make_sender("bob@acme.com", name="Bob", subject="Invoice attached", minutes_ago=2),
    ]

    digest = build_digest(USER_ID, senders, [], "mailieAI")

    assert digest.meetings_found == 1
    assert [entry.is_meeting for entry in digest.entries] == [True, False]


def test_sender_without_name_is_spoken_by_mailbox():
    digest = build_digest(USER_ID, [make_sender("jordan@acme.com")], [], "mailieAI")

    assert digest.entries[0].name == "jordan"


@pytest.mark.asyncio
async def test_generator_applies_user_rules():
    rules = InMemoryRuleRepository()
    await rules.upsert_rule(USER_ID, "letters.io", Category.CALL_ME, None)
    await rules.upsert_rule(USER_ID, "acme.com", Category.KEEP_QUIET, None)

    senders = InMemorySenderRepository(
        [
            make_sender("alice@acme.com", name="Alice"),
            make_sender("editor@letters.io", name="Editor", category=Category.NEWSLETTER),
            make_sender("someone@acme.com", name="Other user", user_id="user-999"),
        ]
    )

    digest = await DigestScriptGenerator(senders, rules, "mailieAI").generate_digest(USER_ID)

    assert [entry.name for entry in digest.entries] == ["Editor"]
    assert digest.user_id == USER_ID
