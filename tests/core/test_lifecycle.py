"""
Tests for `core/lifecycle.py`: the thread state machine and handling-path routing.
"""

import unittest

from core.lifecycle import (
    InvalidTransitionError,
    ThreadRouterError,
    can_transition,
    ensure_transition,
    handling_path_for,
    is_active_status,
)
from shared.models import HandlingPath, ThreadCategory, ThreadStatus


class TestTransitions(unittest.TestCase):

    def test_edges_out_of_open(self):
        for target in (ThreadStatus.AWAITING_CONFIRMATION, ThreadStatus.RESOLVED, ThreadStatus.CANCELLED):
            self.assertTrue(can_transition(ThreadStatus.OPEN, target))

    def test_edges_out_of_awaiting_confirmation(self):
        self.assertTrue(can_transition(ThreadStatus.AWAITING_CONFIRMATION, ThreadStatus.RESOLVED))
        self.assertTrue(can_transition(ThreadStatus.AWAITING_CONFIRMATION, ThreadStatus.CANCELLED))
        self.assertFalse(can_transition(ThreadStatus.AWAITING_CONFIRMATION, ThreadStatus.OPEN))

    def test_reasserting_non_terminal_status_is_allowed(self):
        self.assertTrue(can_transition(ThreadStatus.OPEN, ThreadStatus.OPEN))
        self.assertTrue(can_transition(ThreadStatus.AWAITING_CONFIRMATION, ThreadStatus.AWAITING_CONFIRMATION))

    def test_no_edge_leaves_a_terminal_state(self):
        for terminal in (ThreadStatus.RESOLVED, ThreadStatus.CANCELLED):
            for target in ThreadStatus:
                self.assertFalse(can_transition(terminal, target))

    def test_ensure_transition_raises_with_details(self):
        with self.assertRaises(InvalidTransitionError) as ctx:
            ensure_transition("thread_1", ThreadStatus.RESOLVED, ThreadStatus.CANCELLED)
        error = ctx.exception
        self.assertIsInstance(error, ThreadRouterError)
        self.assertEqual(error.thread_id, "thread_1")
        self.assertIs(error.current, ThreadStatus.RESOLVED)
        self.assertIs(error.target, ThreadStatus.CANCELLED)
        self.assertIn("resolved", str(error))

    def test_active_flag_follows_status(self):
        self.assertTrue(is_active_status(ThreadStatus.OPEN))
        self.assertTrue(is_active_status(ThreadStatus.AWAITING_CONFIRMATION))
        self.assertFalse(is_active_status(ThreadStatus.RESOLVED))
        self.assertFalse(is_active_status(ThreadStatus.CANCELLED))


class TestHandlingPath(unittest.TestCase):

    def test_note_producing_categories(self):
        for category in (ThreadCategory.REQUEST, ThreadCategory.COMPLAINT, ThreadCategory.UPSELL):
            self.assertIs(handling_path_for(category), HandlingPath.NOTE)

    def test_answer_only_categories(self):
        for category in (ThreadCategory.FAQ, ThreadCategory.GENERAL):
            self.assertIs(handling_path_for(category), HandlingPath.ANSWER)


if __name__ == "__main__":
    unittest.main()
