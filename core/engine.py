"""Wires the scheduling and routing components around one blackboard."""
import logging

from agents.scheduling_agent import SchedulingAgent
from configurations.config import Config
from core.blackboard import Blackboard
from models.collection_models import utcnow
from routing.route_builder import RouteBuilder
from scoring.priority_scorer import PriorityScorer
from services.collector_service import CollectorService
from services.notification_service import NotificationService
from services.route_planner import RoutePlanner
from services.route_tracker import RouteExecutionTracker
from services.schedule_service import ScheduleManager
from storage.sql_store import SQLStore
from tools.osrm_routing import build_distance_provider

logger = logging.getLogger(__name__)


class SchedulingEngine:
    def __init__(self, store=None, distance_provider=None, collectors=None, notifier=None, clock=utcnow):
        self.clock = clock
        self.blackboard = Blackboard(store)
        self.blackboard.load_from_store()

        self.notifier = notifier if notifier is not None else NotificationService()
        self.scorer = PriorityScorer(clock=clock)
        self.collectors = collectors if collectors is not None else CollectorService(self.blackboard, clock=clock)
        if self.collectors.blackboard is None:
            self.collectors.blackboard = self.blackboard

        self.schedules = ScheduleManager(self.blackboard, self.scorer, self.notifier, clock=clock)
        self.builder = RouteBuilder(distance_provider or build_distance_provider(), clock=clock)
        self.planner = RoutePlanner(self.blackboard, self.builder, self.scorer, self.schedules, clock=clock)
        self.tracker = RouteExecutionTracker(self.blackboard, self.schedules, self.notifier, clock=clock)
        self.agent = SchedulingAgent(self.blackboard, self.scorer, self.schedules, self.collectors,
                                     self.notifier, clock=clock)

    @classmethod
    def from_config(cls) -> "SchedulingEngine":
        store = None
        if Config.DATABASE_URL:
            store = SQLStore(Config.DATABASE_URL)
            logger.info("Persisting to the configured database")
        else:
            logger.warning("DATABASE_URL not set; state is kept in memory only")
        return cls(store=store)

    def shutdown(self) -> None:
        self.agent.stop()
        self.notifier.shutdown()
