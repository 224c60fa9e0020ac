"""
Test cases for wake phrase detection and the listen loop.
"""
import unittest
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from nodcam.coordinator import ActivityCoordinator
from nodcam.types import Transcript, TranscriptOutcome
from nodcam.voice import SessionOutcome, SessionResult
from nodcam.wake_word import WakeWordMonitor, find_wake_phrase

VARIANTS = ["jarvas", "jervis", "javis"]


class TestFindWakePhrase(unittest.TestCase):
    """Test locating the wake phrase inside a transcript."""

    def test_question_follows_phrase(self):
        """Test that the text after the phrase is returned as the question."""
        self.assertEqual(find_wake_phrase("jarvis is it raining", "jarvis"), "is it raining")

    def test_case_and_punctuation(self):
        """Test case-insensitive matching with punctuation trimmed."""
        self.assertEqual(find_wake_phrase("Hey JARVIS, is the door open?", "jarvis"),
                         "is the door open?")

    def test_question_keeps_its_punctuation(self):
        """Test that separators after the phrase go but the question's own punctuation stays."""
        self.assertEqual(find_wake_phrase("Jarvis... is it 5 p.m.?  ", "jarvis"), "is it 5 p.m.?")
        self.assertEqual(find_wake_phrase("jarvis - lights on.", "jarvis"), "lights on.")

    def test_absent(self):
        """Test transcripts without the phrase."""
        self.assertIsNone(find_wake_phrase("hello there", "jarvis", VARIANTS))
        self.assertIsNone(find_wake_phrase("", "jarvis", VARIANTS))

    def test_variant(self):
        """Test that a configured mishearing is accepted."""
        self.assertEqual(find_wake_phrase("Jervis, is anyone home", "jarvis", VARIANTS),
                         "is anyone home")

    def test_phrase_only(self):
        """Test that the phrase alone yields an empty question."""
        self.assertEqual(find_wake_phrase("Jarvis.", "jarvis", VARIANTS), "")

    def test_earliest_match_wins(self):
        """Test that the first occurrence in the transcript is used."""
        self.assertEqual(find_wake_phrase("javis ask jarvis something", "jarvis", VARIANTS),
                         "ask jarvis something")


class FakeSession:
    """Voice session stand-in with canned listen transcripts."""

    def __init__(self, transcripts):
        self.transcripts = list(transcripts)
        self.questions = []
        self.coordinator = ActivityCoordinator()

    async def listen(self, max_duration_ms):
        if not self.transcripts:
            return None
        return self.transcripts.pop(0)

    async def run(self, question_text=None):
        self.questions.append(question_text)
        return SessionResult(outcome=SessionOutcome.COMPLETED)


def heard(text):
    return Transcript(TranscriptOutcome.TRANSCRIBED, text)


class TestWakeWordMonitor(unittest.IsolatedAsyncioTestCase):
    """Test the wake phrase loop on top of a voice session."""

    def make(self, transcripts, sleep=None):
        self.results = []
        self.session = FakeSession(transcripts)
        self.monitor = WakeWordMonitor(self.session, "jarvis", VARIANTS,
                                       listen_ms=4000, loop_delay_ms=500,
                                       on_result=self.results.append,
                                       sleep=sleep or self.no_sleep)
        return self.monitor

    async def no_sleep(self, seconds):
        pass

    async def test_runs_question(self):
        """Test that a wake phrase with a question runs it directly."""
        monitor = self.make([heard("jarvis is it raining")])

        result = await monitor.check_once()

        self.assertIs(result.outcome, SessionOutcome.COMPLETED)
        self.assertEqual(self.session.questions, ["is it raining"])
        self.assertEqual(self.results, [result])

    async def test_phrase_alone_records_question(self):
        """Test that a bare wake phrase makes the session record the question."""
        monitor = self.make([heard("jarvis")])

        await monitor.check_once()

        self.assertEqual(self.session.questions, [None])

    async def test_ignores_other_speech(self):
        """Test that speech without the phrase and silence are ignored."""
        monitor = self.make([heard("hello there"), Transcript(TranscriptOutcome.NO_SPEECH)])

        self.assertIsNone(await monitor.check_once())
        self.assertIsNone(await monitor.check_once())
        self.assertEqual(self.session.questions, [])
        self.assertEqual(self.results, [])

    async def test_busy_listen(self):
        """Test that a busy device (no transcript) is skipped."""
        monitor = self.make([])

        self.assertIsNone(await monitor.check_once())

    async def test_loop_stops(self):
        """Test that stop() ends the loop after the current iteration."""
        delays = []

        async def sleep(seconds):
            delays.append(seconds)
            if len(delays) == 2:
                self.monitor.stop()

        monitor = self.make([heard("hello"), heard("jarvis is the light on"), heard("jarvis no")],
                            sleep=sleep)

        await monitor.run()

        self.assertFalse(monitor.running)
        self.assertEqual(delays, [0.5, 0.5])
        self.assertEqual(self.session.questions, ["is the light on"])


if __name__ == '__main__':
    unittest.main()
