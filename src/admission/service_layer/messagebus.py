"""
Message Bus.

Point de passage unique des messages du moteur d'admission :
- une command (inscription, confirmation de paiement, balayage...) a
  un seul handler, dont le résultat est rendu à l'appelant ;
- un event validé par le Unit of Work est distribué à tous ses
  abonnés, dans l'ordre de publication.

Les handlers arrivent ici déjà liés à leurs dépendances (voir
bootstrap.inject_dependencies) : le bus ne fait que router.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Union

from admission.domain import commands, events
from admission.service_layer import unit_of_work

logger = logging.getLogger(__name__)

Message = Union[commands.Command, events.Event]
CommandHandler = Callable[[commands.Command], Any]
EventHandler = Callable[[events.Event], None]


class MessageBus:
    """
    Routeur synchrone.

    `handle` traite le message reçu puis tous les events publiés par
    les transactions validées en chemin, y compris ceux qu'émettent les
    event handlers. Un event handler en échec est loggé et n'interrompt
    ni les autres abonnés ni la command d'origine.
    """

    def __init__(
        self,
        uow: unit_of_work.AbstractUnitOfWork,
        event_handlers: dict[type[events.Event], list[EventHandler]],
        command_handlers: dict[type[commands.Command], CommandHandler],
        dependencies: dict[str, Any] | None = None,
    ):
        self.uow = uow
        self.event_handlers = event_handlers
        self.command_handlers = command_handlers
        # Exposées en lecture pour les views (horloge notamment).
        self.dependencies = dependencies or {}

    def handle(self, message: Message) -> list[Any]:
        """Retourne les résultats des commands traitées, dans l'ordre."""
        pending: deque[Message] = deque([message])
        results: list[Any] = []
        while pending:
            current = pending.popleft()
            if isinstance(current, commands.Command):
                results.append(self._dispatch_command(current))
            elif isinstance(current, events.Event):
                self._dispatch_event(current)
            else:
                raise ValueError(f"Message de type inconnu : {type(current)}")
            pending.extend(self.uow.collect_new_events())
        return results

    def _dispatch_command(self, command: commands.Command) -> Any:
        handler = self.command_handlers.get(type(command))
        if handler is None:
            raise ValueError(f"Aucun handler pour la command {type(command).__name__}")
        logger.debug("Command %s", command)
        return handler(command)

    def _dispatch_event(self, event: events.Event) -> None:
        for handler in self.event_handlers.get(type(event), []):
            try:
                handler(event)
            except Exception:
                logger.exception("Handler %r en échec pour l'event %s", handler, event)
