# teashop/services/loyalty.py
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class LoyaltyLevel:
    level: int
    name: str
    min_xp: int
    max_xp: Optional[int]
    discount: int
    benefits: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "name": self.name,
            "minXP": self.min_xp,
            "maxXP": self.max_xp,
            "discount": self.discount,
            "benefits": list(self.benefits),
        }


# 1 рубль покупок = 1 XP
LOYALTY_LEVELS: List[LoyaltyLevel] = [
    LoyaltyLevel(1, "Новичок", 0, 2999, 0, ["Доступ к базовому каталогу"]),
    LoyaltyLevel(2, "Ценитель", 3000, 6999, 5, [
        "Скидка 5% на все покупки",
        "Доступ к базовому каталогу",
    ]),
    LoyaltyLevel(3, "Чайный мастер", 7000, 14999, 10, [
        "Скидка 10% на все покупки",
        "Персональный чат с консультациями",
        "Приглашения на закрытые чайные вечеринки",
        "Возможность запросить любой чай",
    ]),
    LoyaltyLevel(4, "Чайный Гуру", 15000, None, 15, [
        "Скидка 15% на все покупки",
        "Все привилегии уровня 3",
        "Приоритетное обслуживание",
        "Эксклюзивные предложения",
    ]),
]


def get_loyalty_level(xp: int) -> LoyaltyLevel:
    for level in reversed(LOYALTY_LEVELS):
        if xp >= level.min_xp:
            return level
    return LOYALTY_LEVELS[0]


def get_loyalty_discount(xp: int) -> int:
    return get_loyalty_level(xp).discount


def get_loyalty_progress(xp: int) -> dict:
    current = get_loyalty_level(xp)
    idx = LOYALTY_LEVELS.index(current)
    next_level = LOYALTY_LEVELS[idx + 1] if idx + 1 < len(LOYALTY_LEVELS) else None

    xp_to_next = 0
    progress = 100.0
    if next_level:
        xp_to_next = next_level.min_xp - xp
        progress = (xp - current.min_xp) / (next_level.min_xp - current.min_xp) * 100

    return {
        "currentLevel": current.to_dict(),
        "currentXP": xp,
        "nextLevel": next_level.to_dict() if next_level else None,
        "xpToNextLevel": xp_to_next,
        "progressPercentage": round(progress, 2),
    }
