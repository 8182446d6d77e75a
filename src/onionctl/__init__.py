"""


Network Agent Connections

- Agent: the overlay network client process (tor). Launched with a fixed base configuration,
  bridge arguments and an IP version policy. See agent.AgentConfiguration.
- Control channel: the authenticated session to the agent's control port. Only the interface
  (control.channel.ControlChannel) lives here; the wire protocol is supplied by an implementation.
- Bridges: a BridgeConfiguration requested by the user. bridges_differ() decides if a running agent
  needs to be told about new bridges.
- Reachability: a ReachabilityMonitor polls which IP versions are routable and fires
  ReachabilityChangedEvent. The orchestrator turns those into live configuration and a reconnect.
- Retry: a RetryScheduler holds the single "stuck bootstrap" retry.
- ConnectionOrchestrator: composes all of the above. facade.build_orchestrator() builds one from
  the settings module.


## Threading

Everything the orchestrator owns is touched only by work on its DispatchQueue, which runs on one
background thread. The control channel may deliver completions and events on its own threads;
those are posted back to the queue.

The agent and the pluggable transport helper are child processes. Launching is fire and forget:
the orchestrator waits a fixed settle delay before connecting to the control port.

The reachability monitor polls on its own background thread and posts events to the shared
EventSource; the orchestrator's handler immediately hands them to the queue.
"""
