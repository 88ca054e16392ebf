"""
Agora Forum - Moderation Controller Tests
=========================================

Tests for authorization, idempotent transitions and moderation notifications.
"""

import asyncio

import pytest

from agora.core.errors import Conflict, NotFound, Unauthorized
from agora.models import BanState, ForumPost, NotificationKind, ProfileRole, ThreadState
from agora.modules.forum import ModerationAction, ModerationController, ModerationOutcome


class TestAuthorization:
    """Tests for moderator checks."""

    @pytest.mark.parametrize("action", ["pin", "unpin", "lock", "unlock"])
    async def test_members_cannot_moderate_threads(self, moderation, thread, bob, action):
        """Test thread actions by members fail with Unauthorized."""
        with pytest.raises(Unauthorized):
            await getattr(moderation, action)(bob.id, thread.id)

    @pytest.mark.parametrize("action", ["ban", "unban", "promote", "demote"])
    async def test_members_cannot_moderate_members(self, moderation, alice, bob, action):
        """Test member actions by members fail with Unauthorized."""
        with pytest.raises(Unauthorized):
            await getattr(moderation, action)(bob.id, alice.id)

    async def test_unknown_actor(self, moderation, thread):
        """Test unknown actors fail with Unauthorized."""
        with pytest.raises(Unauthorized):
            await moderation.lock(999, thread.id)

    async def test_demoted_actor_loses_rights(self, moderation, moderator, thread):
        """Test a self-demoted moderator cannot pin right afterwards."""
        outcome = await moderation.demote(moderator.id, moderator.id)
        assert outcome.changed

        with pytest.raises(Unauthorized):
            await moderation.pin(moderator.id, thread.id)

    async def test_banned_moderator(self, moderation, members, moderator, alice, thread):
        """Test a banned moderator cannot moderate."""
        await moderation.promote(moderator.id, alice.id)
        await moderation.ban(alice.id, moderator.id)

        with pytest.raises(Unauthorized):
            await moderation.lock(moderator.id, thread.id)

    async def test_review_requires_moderator(self, moderation, alice):
        """Test the review listings are moderator-only."""
        with pytest.raises(Unauthorized):
            await moderation.overview(alice.id)
        with pytest.raises(Unauthorized):
            await moderation.review_members(alice.id)


class TestThreadFlags:
    """Tests for pin and lock."""

    async def test_pin_and_lock(self, moderation, threads, moderator, thread):
        """Test flags are applied and reported in thread states."""
        assert (await moderation.pin(moderator.id, thread.id)).changed
        assert (await moderation.lock(moderator.id, thread.id)).changed

        refreshed = await threads.get_thread(thread.id)
        assert refreshed.states == [ThreadState.PINNED, ThreadState.LOCKED]

    async def test_repeat_is_noop(self, moderation, moderator, thread):
        """Test reaching an already reached state changes nothing."""
        await moderation.lock(moderator.id, thread.id)
        outcome = await moderation.lock(moderator.id, thread.id)

        assert outcome.action == ModerationAction.LOCK
        assert outcome.changed is False

        assert (await moderation.unpin(moderator.id, thread.id)).changed is False

    async def test_unlock_reopens(self, moderation, threads, moderator, thread, bob):
        """Test unlocking lets members reply again."""
        await moderation.lock(moderator.id, thread.id)
        await moderation.unlock(moderator.id, thread.id)

        post = await threads.create_post(bob.id, thread.id, "back again")
        assert post.id is not None

    async def test_deleted_thread(self, moderation, threads, moderator, thread):
        """Test flags cannot be set on a deleted thread."""
        await threads.soft_delete_thread(thread.id)
        with pytest.raises(NotFound):
            await moderation.pin(moderator.id, thread.id)

    async def test_lock_modes(self, moderation, moderator, thread, row_locks):
        """Test the thread is locked for update and the moderator only shared."""
        row_locks.clear()
        await moderation.lock(moderator.id, thread.id)

        assert len(row_locks) == 2
        assert "FROM forum_threads" in row_locks[0]
        assert row_locks[0].endswith("FOR NO KEY UPDATE")
        assert "FROM profiles" in row_locks[1]
        assert row_locks[1].endswith("FOR SHARE")

    async def test_lock_races_replies(self, moderation, threads, members, moderator, thread, counts):
        """Test a lock racing replies leaves reply_count equal to the accepted posts."""
        repliers = [await members.register(f"racer{i:02d}") for i in range(8)]

        results = await asyncio.gather(
            *(threads.create_post(member.id, thread.id, "quick") for member in repliers[:4]),
            moderation.lock(moderator.id, thread.id),
            *(threads.create_post(member.id, thread.id, "quick") for member in repliers[4:]),
            return_exceptions=True,
        )

        accepted = [r for r in results if isinstance(r, ForumPost)]
        assert all(isinstance(r, (ForumPost, ModerationOutcome, Conflict)) for r in results)
        row = await counts.thread_row(thread.id)
        assert row.is_locked
        assert row.reply_count == len(accepted) == await counts.live_posts(thread.id)


class TestDelete:
    """Tests for moderated deletes."""

    async def test_moderator_deletes_thread(self, moderation, threads, moderator, thread):
        """Test deletion hides the thread and repeats are no-ops."""
        assert (await moderation.delete_thread(moderator.id, thread.id)).changed
        assert (await moderation.delete_thread(moderator.id, thread.id)).changed is False

        with pytest.raises(NotFound):
            await threads.get_thread(thread.id)

    async def test_author_deletes_own(self, moderation, threads, thread, alice, bob, counts):
        """Test authors may delete their own content."""
        post = await threads.create_post(bob.id, thread.id, "regret")

        assert (await moderation.delete_post(bob.id, post.id)).changed
        assert (await counts.thread_row(thread.id)).reply_count == 0
        assert (await moderation.delete_thread(alice.id, thread.id)).changed

    async def test_member_cannot_delete_others(self, moderation, threads, thread, alice, bob):
        """Test members cannot delete content they did not write."""
        post = await threads.create_post(alice.id, thread.id, "mine")

        with pytest.raises(Unauthorized):
            await moderation.delete_post(bob.id, post.id)
        with pytest.raises(Unauthorized):
            await moderation.delete_thread(bob.id, thread.id)

    async def test_delete_post_locks_thread_first(
        self, moderation, threads, moderator, thread, bob, row_locks
    ):
        """Test deleting a post locks its thread before the moderator row."""
        post = await threads.create_post(bob.id, thread.id, "spam")
        row_locks.clear()

        await moderation.delete_post(moderator.id, post.id)

        assert "FROM forum_threads" in row_locks[0]
        assert row_locks[0].endswith("FOR NO KEY UPDATE")

    async def test_missing_content(self, moderation, moderator):
        """Test deleting unknown content fails with NotFound."""
        with pytest.raises(NotFound):
            await moderation.delete_thread(moderator.id, 999)
        with pytest.raises(NotFound):
            await moderation.delete_post(moderator.id, 999)


class TestMembers:
    """Tests for ban and role transitions."""

    async def test_ban_blocks_authoring(self, moderation, members, threads, moderator, thread, bob):
        """Test a banned member is blocked until unbanned."""
        assert (await moderation.ban(moderator.id, bob.id)).changed
        assert (await members.get_profile(bob.id)).ban_state == BanState.BANNED

        with pytest.raises(Unauthorized):
            await threads.create_post(bob.id, thread.id, "hello?")

        assert (await moderation.unban(moderator.id, bob.id)).changed
        await threads.create_post(bob.id, thread.id, "hello!")

    async def test_ban_is_idempotent(self, moderation, moderator, bob):
        """Test banning twice is a no-op."""
        await moderation.ban(moderator.id, bob.id)
        assert (await moderation.ban(moderator.id, bob.id)).changed is False
        assert (await moderation.unban(moderator.id, moderator.id)).changed is False

    async def test_promote_and_demote(self, moderation, members, moderator, alice, thread):
        """Test promoted members can moderate and repeats are no-ops."""
        assert (await moderation.promote(moderator.id, alice.id)).changed
        assert (await moderation.promote(moderator.id, alice.id)).changed is False
        assert (await members.get_profile(alice.id)).role == ProfileRole.MODERATOR

        assert (await moderation.lock(alice.id, thread.id)).changed

        assert (await moderation.demote(moderator.id, alice.id)).changed
        assert (await moderation.demote(moderator.id, alice.id)).changed is False

    async def test_unknown_target(self, moderation, moderator):
        """Test transitions on unknown profiles fail with NotFound."""
        with pytest.raises(NotFound):
            await moderation.ban(moderator.id, 999)
        with pytest.raises(NotFound):
            await moderation.promote(moderator.id, 999)

    async def test_profiles_locked_in_id_order(self, moderation, moderator, alice, row_locks):
        """Test the actor and target rows are locked together, lowest ID first."""
        row_locks.clear()
        await moderation.promote(moderator.id, alice.id)

        assert "FROM profiles" in row_locks[0]
        assert "ORDER BY profiles.id" in row_locks[0]
        assert row_locks[0].endswith("FOR NO KEY UPDATE")

    async def test_moderators_acting_on_each_other(self, moderation, members, moderator, alice):
        """Test two moderators banning each other at once both settle."""
        await moderation.promote(moderator.id, alice.id)

        await asyncio.gather(
            moderation.ban(moderator.id, alice.id),
            moderation.ban(alice.id, moderator.id),
            return_exceptions=True,
        )

        states = {
            (await members.get_profile(user.id)).ban_state for user in (moderator, alice)
        }
        assert states == {BanState.ACTIVE, BanState.BANNED}


class TestModerationNotifications:
    """Tests for notifications emitted by moderation."""

    async def test_target_is_notified(self, moderation, notifications, moderator, thread, alice):
        """Test the thread author hears about a lock."""
        await moderation.lock(moderator.id, thread.id)

        unread = await notifications.list_unread(alice.id)
        assert len(unread) == 1
        assert unread[0].kind == NotificationKind.MODERATION_ACTION
        assert unread[0].actor_id == moderator.id
        assert "locked" in unread[0].message

    async def test_noop_is_silent(self, moderation, notifications, moderator, bob):
        """Test no-op transitions emit nothing."""
        await moderation.ban(moderator.id, bob.id)
        await notifications.mark_all_read(bob.id)
        await moderation.ban(moderator.id, bob.id)

        assert await notifications.unread_count(bob.id) == 0

    async def test_self_action_is_silent(self, moderation, notifications, moderator, threads, category):
        """Test moderators are not notified about their own actions."""
        own = await threads.create_thread(moderator.id, category.id, "Rules", "Be nice")
        await moderation.pin(moderator.id, own.id)

        assert await notifications.list_unread(moderator.id) == []

    @pytest.mark.parametrize(
        "forward, reverse, message",
        [
            ("ban", "unban", "reinstated"),
            ("promote", "demote", "no longer a moderator"),
        ],
    )
    async def test_reversal_replaces_unread(
        self, moderation, notifications, moderator, bob, forward, reverse, message
    ):
        """Test a reversing action leaves only the latest state unread."""
        await getattr(moderation, forward)(moderator.id, bob.id)
        await getattr(moderation, reverse)(moderator.id, bob.id)

        unread = await notifications.list_unread(bob.id)
        assert len(unread) == 1
        assert message in unread[0].message
        assert len(await notifications.list_all(bob.id)) == 2

    async def test_second_flag_replaces_unread(
        self, moderation, notifications, moderator, thread, alice
    ):
        """Test pin after lock shows the pin unread and keeps the lock in history."""
        await moderation.lock(moderator.id, thread.id)
        await moderation.pin(moderator.id, thread.id)

        unread = await notifications.list_unread(alice.id)
        assert [n.message for n in unread] == ["Your thread 'Study tips' was pinned"]
        assert len(await notifications.list_all(alice.id)) == 2


class TestReview:
    """Tests for the moderation overview and audit listings."""

    async def test_overview_counts(self, moderation, threads, moderator, thread, alice, bob):
        """Test overview counts live content and active members."""
        post = await threads.create_post(bob.id, thread.id, "one")
        await threads.create_post(bob.id, thread.id, "two")
        await threads.soft_delete_post(post.id)
        await moderation.ban(moderator.id, bob.id)

        assert await moderation.overview(moderator.id) == {
            "active_members": 2,
            "threads": 1,
            "posts": 1,
        }

    async def test_review_includes_deleted(self, moderation, threads, moderator, thread, bob):
        """Test audit listings keep soft-deleted rows."""
        post = await threads.create_post(bob.id, thread.id, "gone")
        await threads.soft_delete_post(post.id)
        await threads.soft_delete_thread(thread.id)

        reviewed_threads = await moderation.review_threads(moderator.id)
        reviewed_posts = await moderation.review_posts(moderator.id)
        assert [t.id for t in reviewed_threads] == [thread.id]
        assert reviewed_threads[0].is_deleted
        assert [p.id for p in reviewed_posts] == [post.id]

    async def test_review_members_includes_banned(self, moderation, moderator, alice, bob):
        """Test the member review lists banned members too."""
        await moderation.ban(moderator.id, bob.id)

        reviewed = await moderation.review_members(moderator.id)
        assert {profile.id for profile in reviewed} == {moderator.id, alice.id, bob.id}

    def test_describe(self):
        """Test outcome serialization."""
        outcome = ModerationOutcome(ModerationAction.BAN, 7, True)
        assert ModerationController.describe(outcome) == {
            "action": "ban",
            "target_id": 7,
            "changed": True,
        }
