"""Command delivery to devices."""

from pyreconcile.dispatch.dispatcher import CommandDispatcher, CommandSender, SendOutcome
from pyreconcile.dispatch.mqtt import BrokerEndpoint, MqttCommandSender, parse_broker_url

__all__ = [
    "BrokerEndpoint",
    "CommandDispatcher",
    "CommandSender",
    "MqttCommandSender",
    "SendOutcome",
    "parse_broker_url",
]
