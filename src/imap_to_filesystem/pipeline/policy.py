from __future__ import annotations

from typing import List

from imap_to_filesystem.actions.core import Action, ActionType
from imap_to_filesystem.rules.core import FilterRule
from imap_to_filesystem.rules.criteria import PROCESSED_KEYWORD


def actions_after_save(rule: FilterRule, uid: int, saved_name: str) -> List[Action]:
    # The marker always comes first so a failed move never leaves an unmarked copy behind.
    actions: List[Action] = [
        Action(
            type=ActionType.ADD_KEYWORD,
            uid=uid,
            filter_name=rule.name,
            keyword=PROCESSED_KEYWORD,
            reason=f"saved {saved_name}",
        )
    ]

    if rule.done_mailbox:
        actions.append(
            Action(
                type=ActionType.MOVE,
                uid=uid,
                filter_name=rule.name,
                mailbox=rule.done_mailbox,
                reason=f"saved {saved_name}",
            )
        )

    return actions
