"""Tests for room identifier derivation."""
import re

import pytest

from happytalk.rooms import (
    PUBLIC_ROOM_ID,
    dm_room_id,
    extract_dm_participants,
    group_room_id,
    is_dm_room,
    is_group_room,
    is_public_room,
    public_room_id,
    room_id_from_name,
    room_kind,
)


class TestPublicRoom:
    def test_constant(self):
        assert public_room_id() == "public"
        assert PUBLIC_ROOM_ID == "public"

    def test_is_public(self):
        assert is_public_room("public")
        assert not is_public_room("public-2")


class TestRoomIdFromName:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Team Chat!", "team-chat"),
            ("  General  ", "general"),
            ("Rust & Go -- Fans", "rust-go-fans"),
            ("already-slugged", "already-slugged"),
            ("ÜBER cool", "ber-cool"),
            ("2024 Plans", "2024-plans"),
        ],
    )
    def test_slugs(self, name, expected):
        assert room_id_from_name(name) == expected

    def test_only_symbols_gives_empty(self):
        assert room_id_from_name("!!! ???") == ""

    @pytest.mark.parametrize("name", ["Hello World", "a--b", "-x-", "Ω mega Ω", "tab\there"])
    def test_output_alphabet(self, name):
        slug = room_id_from_name(name)
        assert re.fullmatch(r"[a-z0-9]+(-[a-z0-9]+)*", slug)


class TestDmRoomId:
    def test_sorted_participants(self):
        assert dm_room_id("bob", "alice") == "dm-alice-bob"

    @pytest.mark.parametrize("a, b", [("u1", "u2"), ("zed", "amy"), ("x", "x")])
    def test_commutative(self, a, b):
        assert dm_room_id(a, b) == dm_room_id(b, a)

    def test_extract_participants(self):
        assert extract_dm_participants(dm_room_id("u9", "u3")) == ("u3", "u9")

    def test_extract_rejects_non_dm(self):
        assert extract_dm_participants("public") is None
        assert extract_dm_participants("group-g1") is None

    def test_extract_rejects_hyphenated_ids(self):
        assert extract_dm_participants("dm-a-b-c") is None


class TestGroupRoomId:
    def test_prefix(self):
        assert group_room_id("g42") == "group-g42"
        assert is_group_room("group-g42")
        assert not is_dm_room("group-g42")


class TestRoomKind:
    @pytest.mark.parametrize(
        "room_id, kind",
        [
            ("public", "public"),
            ("dm-a-b", "dm"),
            ("group-g1", "group"),
            ("team-chat", "named"),
        ],
    )
    def test_kind(self, room_id, kind):
        assert room_kind(room_id) == kind
