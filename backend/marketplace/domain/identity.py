from dataclasses import dataclass

from marketplace.domain.orders.statuses import ActorRole


@dataclass(frozen=True)
class Actor:
    id: str
    role: str

    @property
    def is_client(self) -> bool:
        return self.role == ActorRole.CLIENT.value

    @property
    def is_provider(self) -> bool:
        return self.role == ActorRole.PROVIDER.value

    @property
    def is_system(self) -> bool:
        return self.role == ActorRole.SYSTEM.value


SYSTEM_ACTOR = Actor(id="system", role=ActorRole.SYSTEM.value)
