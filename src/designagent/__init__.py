"""DesignAgent - policy gating, self-healing and real-time context sync for the service-design agent."""

__version__ = "0.1.0"
