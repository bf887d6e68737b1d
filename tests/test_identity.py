from __future__ import annotations

import asyncio

import pytest
from hypothesis import given, strategies as st

from ledgerbot.core.errors import DuplicateMessage, UnauthorizedSender
from ledgerbot.schemas.ledger import IdentityLink
from ledgerbot.schemas.webhook import InboundEvent, MessageKind
from ledgerbot.services.identity import IdentityGate, normalize_phone, phone_variants

from .conftest import USER_ID, InMemoryIdentityLinks, InMemoryMessageLogs

area_codes = st.integers(min_value=11, max_value=99).map(str)
subscriber_8 = st.text(alphabet="0123456789", min_size=8, max_size=8)


def make_event(
    remote_jid: str = "5511987654321@s.whatsapp.net",
    message_id: str = "MSG-1",
    text: str = "spent 50 on lunch",
    from_me: bool = False,
    alt: tuple[str, ...] = (),
) -> InboundEvent:
    return InboundEvent(
        message_id=message_id,
        remote_jid=remote_jid,
        from_me=from_me,
        kind=MessageKind.TEXT,
        message_type="conversation",
        text=text,
        alt_identifiers=alt,
    )


def link(**overrides) -> IdentityLink:
    values = dict(id=1, user_id=USER_ID, phone_number=None, linked_id=None, is_verified=True)
    values.update(overrides)
    return IdentityLink(**values)


class TestPhoneVariants:
    @given(ddd=area_codes, subscriber=subscriber_8)
    def test_long_and_short_forms_map_to_each_other(self, ddd, subscriber):
        short = f"55{ddd}{subscriber}"
        long = f"55{ddd}9{subscriber}"

        assert set(phone_variants(short)) == {short, long}
        assert set(phone_variants(long)) == {long, short}

    @given(ddd=area_codes, subscriber=subscriber_8.filter(lambda s: not s.startswith("9")))
    def test_thirteen_digits_without_nine_has_no_variant(self, ddd, subscriber):
        number = f"55{ddd}1{subscriber}"
        assert phone_variants(number) == [number]

    @given(number=st.text(alphabet="0123456789", min_size=6, max_size=15).filter(lambda n: not n.startswith("55")))
    def test_other_countries_are_untouched(self, number):
        assert phone_variants(number) == [number]

    def test_jid_suffix_and_device_are_stripped(self):
        assert normalize_phone("5511987654321:12@s.whatsapp.net") == "5511987654321"
        assert phone_variants("5511987654321@s.whatsapp.net")[0] == "5511987654321"


class TestFiltering:
    def test_self_and_broadcast_are_ignored(self):
        gate = IdentityGate(InMemoryMessageLogs(), InMemoryIdentityLinks())

        assert gate.should_ignore(make_event(from_me=True))
        assert gate.should_ignore(make_event(remote_jid="status@broadcast"))
        assert not gate.should_ignore(make_event())

    def test_register_rejects_repeated_message_id(self):
        logs = InMemoryMessageLogs()
        gate = IdentityGate(logs, InMemoryIdentityLinks())

        asyncio.run(gate.register(make_event()))
        with pytest.raises(DuplicateMessage):
            asyncio.run(gate.register(make_event()))
        assert len(logs.rows) == 1

    def test_content_window_rejects_same_text_with_new_id(self):
        logs = InMemoryMessageLogs()
        gate = IdentityGate(logs, InMemoryIdentityLinks(), dedup_window_seconds=3600)

        asyncio.run(gate.register(make_event(message_id="A")))
        with pytest.raises(DuplicateMessage):
            asyncio.run(gate.register(make_event(message_id="B")))

    def test_dedup_key_disabled_by_default(self):
        gate = IdentityGate(InMemoryMessageLogs(), InMemoryIdentityLinks())
        assert gate.dedup_key(make_event()) is None

    def test_dedup_key_changes_with_bucket(self):
        gate = IdentityGate(InMemoryMessageLogs(), InMemoryIdentityLinks(), dedup_window_seconds=60)
        event = make_event()

        assert gate.dedup_key(event, now=0) == gate.dedup_key(event, now=59)
        assert gate.dedup_key(event, now=0) != gate.dedup_key(event, now=60)
        assert gate.dedup_key(event, now=0).startswith("5511987654321_")


class TestResolve:
    def test_phone_lookup_matches_short_stored_form(self):
        links = InMemoryIdentityLinks([link(phone_number="551187654321")])
        gate = IdentityGate(InMemoryMessageLogs(), links)

        sender = asyncio.run(gate.resolve(make_event(remote_jid="5511987654321@s.whatsapp.net")))

        assert sender.user_id == USER_ID
        assert sender.reply_to == "551187654321"

    def test_verified_link_is_preferred(self):
        links = InMemoryIdentityLinks(
            [
                link(id=1, user_id="other", phone_number="5511987654321", is_verified=False),
                link(id=2, phone_number="551187654321", is_verified=True),
            ]
        )
        gate = IdentityGate(InMemoryMessageLogs(), links)

        sender = asyncio.run(gate.resolve(make_event()))

        assert sender.user_id == USER_ID

    def test_unverified_link_is_rejected(self):
        links = InMemoryIdentityLinks([link(phone_number="5511987654321", is_verified=False)])
        gate = IdentityGate(InMemoryMessageLogs(), links)

        with pytest.raises(UnauthorizedSender):
            asyncio.run(gate.resolve(make_event()))

    def test_unknown_sender_is_rejected(self):
        gate = IdentityGate(InMemoryMessageLogs(), InMemoryIdentityLinks())

        with pytest.raises(UnauthorizedSender):
            asyncio.run(gate.resolve(make_event()))

    def test_linked_id_lookup(self):
        links = InMemoryIdentityLinks([link(phone_number="5511987654321", linked_id="12345@lid")])
        gate = IdentityGate(InMemoryMessageLogs(), links)

        sender = asyncio.run(gate.resolve(make_event(remote_jid="12345@lid")))

        assert sender.user_id == USER_ID
        assert sender.reply_to == "5511987654321"

    def test_linked_id_is_remembered_from_alt_identifier(self):
        links = InMemoryIdentityLinks([link(phone_number="5511987654321")])
        gate = IdentityGate(InMemoryMessageLogs(), links)

        asyncio.run(
            gate.resolve(make_event(remote_jid="99999@lid", alt=("5511987654321@s.whatsapp.net",)))
        )

        assert links.links[0].linked_id == "99999@lid"

    def test_phone_is_remembered_for_linked_id_only_user(self):
        links = InMemoryIdentityLinks([link(linked_id="12345@lid")])
        gate = IdentityGate(InMemoryMessageLogs(), links)

        sender = asyncio.run(
            gate.resolve(make_event(remote_jid="12345@lid", alt=("5511987654321@s.whatsapp.net",)))
        )

        assert sender.reply_to == "5511987654321"
        assert links.links[0].phone_number == "5511987654321"

    def test_linked_id_without_phone_has_no_reply_address(self):
        links = InMemoryIdentityLinks([link(linked_id="12345@lid")])
        gate = IdentityGate(InMemoryMessageLogs(), links)

        sender = asyncio.run(gate.resolve(make_event(remote_jid="12345@lid")))

        assert sender.reply_to is None


class TestPhoneCandidates:
    def test_linked_id_uses_alternate_phone(self):
        gate = IdentityGate(InMemoryMessageLogs(), InMemoryIdentityLinks())
        event = make_event(remote_jid="12345@lid", alt=("5511987654321@s.whatsapp.net", "67890@lid"))

        candidates = gate.phone_candidates(event)

        assert candidates[0] == "5511987654321"
        assert set(candidates) == {"5511987654321", "551187654321"}

    def test_linked_id_alone_has_no_candidates(self):
        gate = IdentityGate(InMemoryMessageLogs(), InMemoryIdentityLinks())
        assert gate.phone_candidates(make_event(remote_jid="12345@lid")) == []
