from abc import ABC, abstractmethod
from typing import List
import logging

from aggregator.http_client import HTTPClient
from aggregator.models import Mention

logger = logging.getLogger(__name__)


class BaseSource(ABC):
    def __init__(self, http_client: HTTPClient):
        self.http_client = http_client
        self.name = self.__class__.__name__

    @abstractmethod
    async def fetch_mentions(self) -> List[Mention]:
        """
        Main entry point for the source.
        Returns every mention in the source's current window.
        Raises SourceError when the source cannot be read.
        """
        pass
