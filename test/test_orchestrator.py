import pytest
import pytest_asyncio

from core.exceptions import CaptureError
from events.events import CommandRecognized, SessionClosed
from voice.commands import Action
from voice.orchestrator import PAUSED, RESUMED, UNMUTED
from voice.session import READY_TO_COOK, Phase


@pytest_asyncio.fixture
async def opened(orchestrator, recipe, settle):
    await orchestrator.open(recipe)
    await settle()
    return orchestrator


async def say(source, settle, *utterances):
    for text in utterances:
        source.hear(text)
        await settle()


@pytest.mark.asyncio
async def test_open_welcomes_and_listens(opened, source, output) -> None:
    assert output.opened == 1
    assert output.played[0].startswith("Welcome to hands-free cooking mode!")
    assert "Pancakes" in output.played[0]
    assert output.played[1] == "Current ingredient: Measure 200 g of flour."
    assert source.listening
    assert opened.session.phase is Phase.PREPARATION


@pytest.mark.asyncio
async def test_next_three_times_reaches_ready_to_cook(opened, source, settle, output) -> None:
    await say(source, settle, "next", "next", "next")
    session = opened.session
    assert len(session.completed_item_ids) == 3
    assert session.phase is Phase.PREPARATION
    assert opened.last_feedback == READY_TO_COOK
    assert output.played[-1] == READY_TO_COOK


@pytest.mark.asyncio
async def test_start_cooking_too_early_explains_remaining(opened, source, settle) -> None:
    await say(source, settle, "start cooking")
    assert opened.session.phase is Phase.PREPARATION
    assert opened.last_feedback.startswith("You still have 3 ingredients to measure")


@pytest.mark.asyncio
async def test_full_walkthrough(opened, source, settle, output) -> None:
    await say(source, settle, "next", "next", "next", "start cooking", "next step", "go back")
    assert opened.session.phase is Phase.COOKING
    assert opened.session.step_index == 0
    assert output.played[-3:] == [
        "Starting cooking phase! Step 1: Whisk everything together.",
        "Step 2: Rest the batter for ten minutes.",
        "Step 1: Whisk everything together.",
    ]


@pytest.mark.asyncio
async def test_provider_rejection_uses_local_voice(opened, source, settle, remote, local,
                                                   playback_log) -> None:
    remote.fail = True
    await say(source, settle, "repeat")
    assert local.spoken == ["Current ingredient: Measure 200 g of flour."]
    assert playback_log[-1] == ("local", "Current ingredient: Measure 200 g of flour.", False)
    assert source.listening


@pytest.mark.asyncio
async def test_never_listening_while_speaking(opened, source, settle, playback_log) -> None:
    await say(source, settle, "next", "help", "repeat", "back")
    assert len(playback_log) == 6
    assert not any(listening for _, _, listening in playback_log)


@pytest.mark.asyncio
async def test_fuzzy_command(opened, source, settle, bus) -> None:
    recognized = []
    bus.subscribe(CommandRecognized, recognized.append)
    await say(source, settle, "nekst")
    assert opened.session.step_index == 1
    assert recognized[0].action == "next"
    assert recognized[0].score == 0.6


@pytest.mark.asyncio
async def test_unmatched_speech_is_ignored(opened, source, settle, output) -> None:
    before = list(output.played)
    await say(source, settle, "the oven smells lovely")
    assert output.played == before
    assert opened.session.step_index == 0


@pytest.mark.asyncio
async def test_utterances_ignored_while_feedback_plays(orchestrator, recipe, source, settle) -> None:
    await orchestrator.open(recipe)
    await orchestrator.capture.suppress()
    source.hear("next")
    await settle()
    assert orchestrator.session.step_index == 0


@pytest.mark.asyncio
async def test_command_right_after_enqueue_is_ignored(opened, source, settle) -> None:
    opened.feedback.enqueue("Timer set.")
    source.hear("next")
    await settle()
    assert opened.session.step_index == 0


@pytest.mark.asyncio
async def test_pause_and_resume_listening(opened, source, settle, output, capture) -> None:
    await say(source, settle, "pause")
    assert output.played[-1] == PAUSED
    assert capture.state.manually_stopped
    assert not source.listening

    await opened.resume_listening()
    await settle()
    assert output.played[-1] == RESUMED
    assert source.listening


@pytest.mark.asyncio
async def test_mute_and_unmute(opened, source, settle, output) -> None:
    count = len(output.played)
    await say(source, settle, "mute", "next")
    assert opened.session.step_index == 1
    assert len(output.played) == count

    await say(source, settle, "unmute")
    assert output.played[-1] == UNMUTED


@pytest.mark.asyncio
async def test_help_lists_commands(opened, source, settle, output) -> None:
    await say(source, settle, "help")
    assert output.played[-1].startswith("You can say:")


@pytest.mark.asyncio
async def test_button_actions_share_the_voice_path(opened, settle, output) -> None:
    assert opened.handle_action(Action.COMPLETE).startswith("Ingredient marked as measured!")
    assert opened.handle_action(Action.COMPLETE) is None
    await settle()
    assert output.played[-1].startswith("Ingredient marked as measured!")


@pytest.mark.asyncio
async def test_close_tears_everything_down(opened, source, settle, output, bus) -> None:
    closed = []
    bus.subscribe(SessionClosed, closed.append)
    opened.feedback.enqueue("never spoken")
    await opened.close()
    await settle()

    assert opened.session is None
    assert output.closed == 1
    assert not source.listening
    assert "never spoken" not in output.played
    assert closed[0].title == "Pancakes"

    source.hear("next")
    assert opened.handle_action(Action.NEXT) is None


@pytest.mark.asyncio
async def test_context_manager_closes_session(orchestrator, recipe, output, settle) -> None:
    async with orchestrator:
        await orchestrator.open(recipe)
        await settle()
    assert orchestrator.session is None
    assert output.closed == 1


@pytest.mark.asyncio
async def test_permission_denied_is_reported(orchestrator, recipe, source, settle) -> None:
    source.failures = [CaptureError("not-allowed", "Microphone permission denied")]
    await orchestrator.open(recipe)
    await settle()
    assert orchestrator.last_warning.kind == "not-allowed"
    assert not orchestrator.last_warning.recoverable
    assert not source.listening
    assert orchestrator.is_open
