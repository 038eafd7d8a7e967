"""
Memory evolution.

Keeps four global tuning strategies, scores them against the store metrics of
the instance that just stored something, and when fitness is low (or the
scheduled interval has passed) breeds candidate variations and keeps the best.
Each evolution is appended to a capped per-instance history and written to
``memory_evolution_log``.
"""

from __future__ import annotations

import asyncio
import copy
import math
import random
import time
from datetime import datetime
from typing import Any, Callable, Optional

import core.config as config
from core.db import DB
from core.models import MemoryEvolutionLog

logger = config.logger

DEFAULT_STRATEGIES = {
    "memory_allocation": {"working": 0.3, "episodic": 0.3, "semantic": 0.2, "procedural": 0.2},
    "retrieval_weighting": {"relevance": 0.4, "recency": 0.3, "frequency": 0.3},
    "pattern_recognition": {"temporal": 0.25, "contextual": 0.25, "behavioral": 0.25, "semantic": 0.25},
    "memory_consolidation": {"importance_threshold": 0.7, "frequency_threshold": 3, "time_decay": 0.1},
}
FITNESS_SMOOTHING = 0.2
DEGRADATION_FACTOR = 0.9
IDEAL_PROMOTION_RATE = 0.1
VARIATIONS_PER_PARAM = 3
MUTATIONS = 2


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _adjust(value: float, delta: float) -> float:
    if value > 1:
        return max(0.0, value * (1 + delta))
    return _clamp(value + delta)


def collect_performance(instance) -> dict:
    """Aggregate per-store metrics of one memory instance."""
    per_type = {}
    for memory_type, store in instance.stores().items():
        stats = store.stats()
        operations = stats.get("stores", 0) + stats.get("retrievals", 0)
        failures = stats.get("failures", 0)
        per_type[memory_type] = {
            "records": stats.get("records", 0),
            "operations": operations,
            "failures": failures,
            "success_ratio": 1.0 if operations == 0 else max(0.0, 1 - failures / (operations + failures)),
        }
    total_ops = sum(item["operations"] for item in per_type.values())
    total_failures = sum(item["failures"] for item in per_type.values())
    hit_rate = 1.0 if total_ops == 0 else max(0.0, 1 - total_failures / (total_ops + total_failures))
    discoveries = len(instance.patterns.discoveries) if instance.patterns is not None else 0
    return {
        "memory": per_type,
        "total_records": sum(item["records"] for item in per_type.values()),
        "hit_rate": hit_rate,
        "pattern_discoveries": discoveries,
    }


def allocation_fitness(allocation: dict, performance: dict) -> float:
    total = performance["total_records"]
    if total == 0:
        return 0.5
    fitness = 0.0
    for memory_type, intended in allocation.items():
        item = performance["memory"].get(memory_type, {})
        actual = item.get("records", 0) / total
        fitness += (item.get("success_ratio", 1.0) * 0.7 + (1 - abs(intended - actual)) * 0.3) * intended
    return _clamp(fitness)


def weighting_fitness(weights: dict, performance: dict) -> float:
    balance = 1 - max(weights.values())
    return _clamp(performance["hit_rate"] * (0.8 + balance * 0.2))


def pattern_fitness(weights: dict, performance: dict) -> float:
    return _clamp(0.5 + min(0.5, performance["pattern_discoveries"] * 0.05))


def consolidation_fitness(params: dict, performance: dict) -> float:
    semantic = performance["memory"].get("semantic", {}).get("records", 0)
    episodic = performance["memory"].get("episodic", {}).get("records", 0) or 1
    promotion_rate = semantic / episodic
    return _clamp(1 - abs(promotion_rate - IDEAL_PROMOTION_RATE) / IDEAL_PROMOTION_RATE)


FITNESS_FUNCTIONS = {
    "memory_allocation": allocation_fitness,
    "retrieval_weighting": weighting_fitness,
    "pattern_recognition": pattern_fitness,
    "memory_consolidation": consolidation_fitness,
}


def _insert_log_sync(
    instance_key: str,
    generation: int,
    reason: str,
    strategies_changed: list,
    avg_fitness: float,
    evolution_data: dict,
) -> None:
    db = DB.SessionLocal()
    try:
        db.add(
            MemoryEvolutionLog(
                instance_key=instance_key,
                generation=generation,
                reason=reason,
                strategies_changed=strategies_changed,
                avg_fitness=avg_fitness,
                evolution_data=evolution_data,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class MemoryEvolution:
    def __init__(
        self,
        enabled: Optional[bool] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        persist: bool = True,
    ):
        self.enabled = config.EVOLUTION_ENABLED if enabled is None else enabled
        self.performance_threshold = config.EVOLUTION_PERFORMANCE_THRESHOLD
        self.interval_seconds = config.EVOLUTION_INTERVAL_SECONDS
        self.min_operations = config.EVOLUTION_MIN_OPERATIONS
        self.mutation_rate = config.EVOLUTION_MUTATION_RATE
        self.history_limit = config.EVOLUTION_HISTORY_LIMIT
        self.persist = persist
        self.initialized = False
        self._random = rng or random.Random()
        self._clock = clock
        self.strategies = {
            name: {"current": dict(params), "fitness": 0.5, "generation": 0}
            for name, params in DEFAULT_STRATEGIES.items()
        }
        self._history: dict[str, list[dict]] = {}
        self._operations: dict[str, int] = {}
        self._last_evolution: dict[str, float] = {}
        self.metrics = {
            "total_evolutions": 0,
            "successful_evolutions": 0,
            "current_generation": 1,
            "average_fitness": 0.5,
            "best_fitness": 0.5,
            "strategies_evaluated": 0,
            "last_evolution": None,
        }

    async def initialize(self) -> None:
        self.initialized = True

    async def evaluate_evolution(self, instance, content: Any = None, context: Any = None) -> Optional[dict]:
        """
        Score current strategies for one instance and evolve them when needed.

        Returns the recorded evolution entry, or None when nothing changed.
        """
        if not self.enabled:
            return None
        key = instance.key
        self._operations[key] = self._operations.get(key, 0) + 1
        self._last_evolution.setdefault(key, self._clock())

        performance = collect_performance(instance)
        effectiveness = {}
        for name, strategy in self.strategies.items():
            fitness = FITNESS_FUNCTIONS[name](strategy["current"], performance)
            strategy["fitness"] = strategy["fitness"] * (1 - FITNESS_SMOOTHING) + fitness * FITNESS_SMOOTHING
            effectiveness[name] = fitness
        self.metrics["strategies_evaluated"] += len(effectiveness)
        self._update_global_fitness()

        avg_fitness = sum(effectiveness.values()) / len(effectiveness)
        reasons = self._assess_need(key, avg_fitness)
        if not reasons:
            return None
        return await self._evolve(key, ", ".join(reasons), avg_fitness, performance)

    def _assess_need(self, key: str, avg_fitness: float) -> list[str]:
        reasons = []
        enough_data = self._operations.get(key, 0) >= self.min_operations
        if enough_data and avg_fitness < self.performance_threshold:
            reasons.append("low_fitness")
        history = self._history.get(key) or []
        if enough_data and history and avg_fitness < history[-1]["avg_fitness"] * DEGRADATION_FACTOR:
            reasons.append("degradation")
        if self._clock() - self._last_evolution[key] >= self.interval_seconds:
            reasons.append("scheduled")
        return reasons

    def _variations(self, current: dict) -> list[dict]:
        candidates = []
        for param in current:
            for _ in range(VARIATIONS_PER_PARAM):
                variation = dict(current)
                variation[param] = _adjust(current[param], (self._random.random() - 0.5) * 0.2)
                candidates.append(variation)
        for _ in range(MUTATIONS):
            mutation = copy.deepcopy(current)
            param = self._random.choice(list(mutation))
            if mutation[param] <= 1 and self._random.random() < self.mutation_rate:
                mutation[param] = self._random.random()
            else:
                mutation[param] = _adjust(mutation[param], self._random.uniform(-0.5, 0.5))
            candidates.append(mutation)
        return candidates

    def _simulate(self, name: str, candidate: dict) -> float:
        values = list(candidate.values())
        if name == "memory_allocation":
            balance = 1 - abs(max(values) - min(values))
            base = 0.3 + balance * 0.4
        elif name == "retrieval_weighting":
            total = sum(values) or 1.0
            entropy = -sum((v / total) * math.log2(v / total) for v in values if v > 0)
            base = 0.2 + (entropy / math.log2(len(values))) * 0.6
        else:
            base = 0.4 + self._random.random() * 0.2
        noise = (self._random.random() - 0.5) * 0.1
        return _clamp(base + noise)

    async def _evolve(self, key: str, reason: str, avg_fitness: float, performance: dict) -> dict:
        self.metrics["total_evolutions"] += 1
        selected = {}
        for name, strategy in self.strategies.items():
            scored = [(self._simulate(name, candidate), candidate) for candidate in self._variations(strategy["current"])]
            best_fitness, best = max(scored, key=lambda item: item[0])
            if best_fitness > strategy["fitness"]:
                selected[name] = {
                    "strategy": best,
                    "fitness": best_fitness,
                    "generation": strategy["generation"] + 1,
                }
        for name, chosen in selected.items():
            self.strategies[name] = {
                "current": chosen["strategy"],
                "fitness": chosen["fitness"],
                "generation": chosen["generation"],
            }
            logger.info(
                "Applied evolved strategy",
                extra={"instance_key": key, "strategy": name, "fitness": round(chosen["fitness"], 3)},
            )

        self.metrics["successful_evolutions"] += 1
        self.metrics["current_generation"] += 1
        self.metrics["last_evolution"] = datetime.utcnow().isoformat()
        self._last_evolution[key] = self._clock()
        self._update_global_fitness()

        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "generation": self.metrics["current_generation"],
            "reason": reason,
            "avg_fitness": avg_fitness,
            "strategies_changed": sorted(selected),
            "strategies": selected,
            "total_records": performance["total_records"],
        }
        history = self._history.setdefault(key, [])
        history.append(entry)
        if len(history) > self.history_limit:
            del history[: len(history) - self.history_limit]

        if self.persist:
            await asyncio.to_thread(
                _insert_log_sync,
                key,
                entry["generation"],
                reason,
                entry["strategies_changed"],
                avg_fitness,
                entry,
            )
        return entry

    def _update_global_fitness(self) -> None:
        values = [strategy["fitness"] for strategy in self.strategies.values()]
        self.metrics["average_fitness"] = sum(values) / len(values)
        self.metrics["best_fitness"] = max(values)

    def forget_instance(self, key: str) -> None:
        self._operations.pop(key, None)
        self._last_evolution.pop(key, None)

    def get_evolution_history(self, key: str, limit: Optional[int] = None) -> list[dict]:
        history = list(self._history.get(key) or [])
        if limit:
            history = history[-limit:]
        return history

    def get_current_strategies(self) -> dict:
        return copy.deepcopy(self.strategies)

    def get_stats(self) -> dict:
        return {
            "initialized": self.initialized,
            "enabled": self.enabled,
            **self.metrics,
            "strategies": {
                name: {
                    "fitness": strategy["fitness"],
                    "generation": strategy["generation"],
                    "parameters": len(strategy["current"]),
                }
                for name, strategy in self.strategies.items()
            },
            "active_instances": len(self._history),
        }
