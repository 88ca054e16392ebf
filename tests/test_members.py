"""
Agora Forum - Profile Ledger Tests
==================================

Tests for registration, profile edits and member listings.
"""

import pytest

from agora.core.errors import Conflict, NotFound, ValidationError
from agora.models import BanState, ProfileRole


class TestRegister:
    """Tests for profile registration."""

    async def test_register_defaults(self, members):
        """Test a new profile starts as an active member with zero counters."""
        profile = await members.register("ada", "Ada Lovelace")

        assert profile.id is not None
        assert profile.role == ProfileRole.MEMBER
        assert profile.ban_state == BanState.ACTIVE
        assert profile.post_count == 0
        assert profile.reputation == 0

    async def test_display_name_defaults_to_username(self, members):
        """Test a blank display name falls back to the username."""
        profile = await members.register("grace", "   ")
        assert profile.display_name == "grace"

    async def test_register_with_identity_id(self, members):
        """Test the identity provider ID is reused as profile ID."""
        profile = await members.register("linus", user_id=4242)
        assert profile.id == 4242

        with pytest.raises(Conflict):
            await members.register("linus2", user_id=4242)

    async def test_username_taken(self, members, alice):
        """Test a second registration with the same username conflicts."""
        with pytest.raises(Conflict):
            await members.register("alice", "Another Alice")

    @pytest.mark.parametrize("username", ["ab", "has space", "x" * 33, "semi;colon"])
    async def test_invalid_username(self, members, username):
        """Test malformed usernames are rejected."""
        with pytest.raises(ValidationError):
            await members.register(username)


class TestProfiles:
    """Tests for profile lookup and edits."""

    async def test_get_profile(self, members, alice):
        """Test lookup by ID and by username."""
        assert (await members.get_profile(alice.id)).username == "alice"
        assert (await members.get_by_username("alice")).id == alice.id

    async def test_get_missing_profile(self, members):
        """Test lookups of unknown profiles fail with NotFound."""
        with pytest.raises(NotFound):
            await members.get_profile(999)
        with pytest.raises(NotFound):
            await members.get_by_username("nobody")

    async def test_update_profile(self, members, alice):
        """Test editable fields are stored trimmed."""
        profile = await members.update_profile(
            alice.id, display_name="  Alice A. ", bio="Hello", location="Lisbon"
        )

        assert profile.display_name == "Alice A."
        assert profile.bio == "Hello"
        assert profile.location == "Lisbon"

    async def test_update_rejects_protected_fields(self, members, alice):
        """Test role and counters cannot be edited through profile updates."""
        with pytest.raises(ValidationError):
            await members.update_profile(alice.id, role="moderator")
        with pytest.raises(ValidationError):
            await members.update_profile(alice.id, reputation=100)

    async def test_update_rejects_empty_display_name(self, members, alice):
        """Test display name cannot be blanked."""
        with pytest.raises(ValidationError):
            await members.update_profile(alice.id, display_name=" ")


class TestListMembers:
    """Tests for member listings."""

    async def test_public_listing_hides_banned(self, members, moderation, moderator, alice, bob):
        """Test banned members disappear from the public listing only."""
        await moderation.ban(moderator.id, bob.id)

        public = await members.list_members()
        everyone = await members.list_members(include_banned=True)

        assert bob.id not in {profile.id for profile in public}
        assert bob.id in {profile.id for profile in everyone}

    async def test_public_listing_ranks_by_reputation(
        self, members, likes, threads, thread, alice, bob
    ):
        """Test members with more reputation are listed first."""
        post = await threads.create_post(bob.id, thread.id, "Useful answer")
        await likes.toggle_like(alice.id, post.id)

        listing = await members.list_members()
        assert listing[0].id == bob.id
        assert listing[0].reputation == 1


class TestBootstrapModerator:
    """Tests for seeding the first moderator."""

    async def test_bootstrap_promotes(self, moderator):
        """Test the first moderator is promoted."""
        assert moderator.role == ProfileRole.MODERATOR
        assert moderator.is_moderator

    async def test_bootstrap_only_once(self, members, moderator, alice):
        """Test bootstrap refuses once a moderator exists."""
        with pytest.raises(Conflict):
            await members.bootstrap_moderator(alice.id)

    async def test_bootstrap_unknown_profile(self, members):
        """Test bootstrap of an unknown profile fails with NotFound."""
        with pytest.raises(NotFound):
            await members.bootstrap_moderator(999)
