# voice/session.py
"""
Guided-session state: phase, current step and measured ingredients.

Every navigation operation returns the text to speak (or None when there is
nothing to say) and never touches audio. Out-of-range requests do not raise;
they answer with a message describing the boundary.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class Phase(str, Enum):
    PREPARATION = "preparation"
    COOKING = "cooking"


@dataclass(frozen=True)
class PreparationItem:
    id: int
    name: str
    amount: float
    unit: str = ""

    def spoken(self) -> str:
        amount = f"{self.amount:g}" if isinstance(self.amount, (int, float)) else str(self.amount)
        quantity = " ".join(part for part in (amount, self.unit) if part)
        return f"Measure {quantity} of {self.name}."


@dataclass
class Recipe:
    title: str
    ingredients: List[PreparationItem] = field(default_factory=list)
    instructions: List[str] = field(default_factory=list)
    ready_in_minutes: int = 0   # display only

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recipe":
        """Build from the recipe subsystem's JSON shape."""
        ingredients = [
            PreparationItem(
                id=int(item["id"]),
                name=item.get("name", ""),
                amount=item.get("amount", 0),
                unit=item.get("unit", ""),
            )
            for item in data.get("ingredients") or []
        ]
        return cls(
            title=data.get("title", "this recipe"),
            ingredients=ingredients,
            instructions=list(data.get("instructions") or []),
            ready_in_minutes=int(data.get("readyInMinutes", data.get("ready_in_minutes", 0)) or 0),
        )


READY_TO_COOK = "All ingredients measured! Say 'start cooking' to begin the cooking instructions."
RECIPE_DONE = "Congratulations! You've completed the recipe. Enjoy your meal!"
FIRST_STEP = "This is the first step."


@dataclass
class Session:
    recipe: Recipe
    phase: Phase = Phase.PREPARATION
    step_index: int = 0
    completed_item_ids: Set[int] = field(default_factory=set)

    # ── helpers ───────────────────────────────────────────────────────────
    @property
    def steps(self) -> list:
        if self.phase is Phase.PREPARATION:
            return self.recipe.ingredients
        return self.recipe.instructions

    def current_item(self) -> Optional[PreparationItem]:
        if self.phase is Phase.PREPARATION and self.step_index < len(self.recipe.ingredients):
            return self.recipe.ingredients[self.step_index]
        return None

    def is_complete(self, item_id: int) -> bool:
        return item_id in self.completed_item_ids

    def remaining_items(self) -> List[PreparationItem]:
        return [i for i in self.recipe.ingredients if i.id not in self.completed_item_ids]

    def progress(self) -> float:
        """Fraction shown in the progress bar (0.0 - 1.0)."""
        if self.phase is Phase.PREPARATION:
            total = len(self.recipe.ingredients)
            return len(self.completed_item_ids) / total if total else 1.0
        total = len(self.recipe.instructions)
        return (self.step_index + 1) / total if total else 1.0

    def minutes_per_step(self) -> int:
        steps = len(self.recipe.instructions)
        if not steps or not self.recipe.ready_in_minutes:
            return 0
        return math.ceil(self.recipe.ready_in_minutes / steps)

    def _describe(self, prefix: str) -> str:
        if self.phase is Phase.PREPARATION:
            return f"{prefix} ingredient: {self.recipe.ingredients[self.step_index].spoken()}"
        return f"Step {self.step_index + 1}: {self.recipe.instructions[self.step_index]}"

    def _empty_message(self) -> Optional[str]:
        if self.steps:
            return None
        if self.phase is Phase.PREPARATION:
            return "There are no ingredients to measure. Say 'start cooking' to begin."
        return "This recipe has no instructions."

    def _remaining_message(self) -> str:
        remaining = self.remaining_items()
        names = ", ".join(item.name for item in remaining)
        noun = "ingredient" if len(remaining) == 1 else "ingredients"
        return (f"You still have {len(remaining)} {noun} to measure: {names}. "
                "Say 'done' when each one is ready.")

    # ── navigation ────────────────────────────────────────────────────────
    def next(self) -> str:
        empty = self._empty_message()
        if empty:
            return empty
        if self.phase is Phase.PREPARATION:
            self.completed_item_ids.add(self.recipe.ingredients[self.step_index].id)
            if self.step_index >= len(self.recipe.ingredients) - 1:
                return READY_TO_COOK if not self.remaining_items() else self._remaining_message()
            self.step_index += 1
            return self._describe("Next")
        if self.step_index >= len(self.recipe.instructions) - 1:
            return RECIPE_DONE
        self.step_index += 1
        return self._describe("Next")

    def previous(self) -> str:
        empty = self._empty_message()
        if empty:
            return empty
        if self.step_index <= 0:
            return FIRST_STEP
        self.step_index -= 1
        return self._describe("Previous")

    def repeat(self) -> str:
        empty = self._empty_message()
        if empty:
            return empty
        if self.phase is Phase.PREPARATION:
            return self._describe("Current")
        return f"Current step: {self.recipe.instructions[self.step_index]}"

    def complete_item(self) -> Optional[str]:
        if self.phase is not Phase.PREPARATION:
            return "Everything is measured already. Say 'next' for the next step."
        item = self.current_item()
        if item is None:
            return self._empty_message()
        if item.id in self.completed_item_ids:
            return None
        self.completed_item_ids.add(item.id)
        return "Ingredient marked as measured! Say 'next' for the next ingredient."

    def advance_phase(self) -> str:
        if self.phase is Phase.COOKING:
            return "You're already cooking. Say 'repeat' to hear the current step."
        if self.remaining_items():
            return self._remaining_message()
        self.phase = Phase.COOKING
        self.step_index = 0
        if not self.recipe.instructions:
            return "Starting cooking phase! " + self._empty_message()
        return f"Starting cooking phase! Step 1: {self.recipe.instructions[0]}"
