# seedingbot

Building blocks for a bot that keeps live football chat rooms active. The
package turns raw match feeds into events, builds prompts for an
OpenAI-compatible chat model and parses what it returns, stores published
messages and reads message templates through SQL, and delivers chat messages
over MQTT or through a WebSocket broadcast function.

## What is inside

| Module | Purpose |
| --- | --- |
| `seedingbot.model` | Dataclasses and enums for events, match state, chat messages, personas, templates and LLM payloads |
| `seedingbot.config` | YAML configuration loading, duration parsing, seeding policy and bot-count settings |
| `seedingbot.ports` | Protocols for the stores, gateways, publishers and repositories a pipeline depends on |
| `seedingbot.metrics` | In-process counters with a Prometheus text snapshot and a WSGI endpoint |
| `seedingbot.retry` | Retry with exponential back-off |
| `seedingbot.circuitbreaker` | `Breaker`, which runs a call and logs its failure |
| `seedingbot.publisher` | `WebSocketPublisher` and the breaker-protected `CircuitBreakerPublisher` |
| `seedingbot.mapper` | Maps raw match feed JSON into `MatchEvent` objects |
| `seedingbot.gateway` | `VLLMGateway`: message generation, intent detection and sentiment |
| `seedingbot.repositories` | `MessageRepo` and `TemplateRepo` over a DB-API 2.0 connection |
| `seedingbot.mqtt_bus` | `MqttPublisher`, `ConsumerBridge` and their connect helpers |

## Configuration

`seedingbot.config.load(path)` reads a YAML file such as:

```yaml
service_name: seeding-bot
kafka:
  brokers: ["localhost:9092"]
  topic: match_events
redis_matches:
  addr: localhost:6379
  db: 0
database:
  url: postgres://localhost:5432/seeding
vllm:
  api_url: http://localhost:11434
  model: qwen2.5:7b
  timeout: 30s
seeding_policy:
  max_messages_bot: 100
  bot_ratio: 0.3
  cooldown: 60s
quality:
  min_length: 3
  max_length: 100
  banned_words: []
```

Durations such as `30s`, `5m` or `1h30m` are read with
`seedingbot.config.parse_duration`. A missing file, malformed YAML or a value
of the wrong type raises `ConfigError`.

```python
from seedingbot.config import load, default_seeding_policy, max_messages_bot_event_type

cfg = load("config.yaml")
cfg.validate()          # ConfigError if service_name is empty

policy = default_seeding_policy()
policy.validate()       # ConfigError on a bad max_messages_bot, bot_ratio or cooldown
max_messages_bot_event_type("goal")  # 5
```

## Mapping match feeds

```python
from seedingbot.mapper import map_bytes_to_events

events = map_bytes_to_events(raw_bytes)
for event in events:
    print(event.match_id, event.type, event.minute)
```

Matches whose status is ended, or that already carry an END incident, are
skipped. Input in an unknown format raises `MappingError`.

## Talking to the model

`VLLMGateway` needs a client object with a `complete(request)` method that
takes an `LLMRequest` and returns the reply text:

```python
from seedingbot.gateway import VLLMGateway

gateway = VLLMGateway(client, api_url="http://localhost:11434", model="qwen2.5:7b")
reply = gateway.generate(bundle, persona)          # LLMResponse
intent = gateway.detect_user_intent("", "What a goal!", bundle.match)
mood = gateway.analyze_sentiment(bundle)           # "positive", "neutral" or "negative"
```

Failures and unusable or flagged output raise `LLMError`. The parsing helpers
(`normalize_llm_json`, `parse_llm_generate_output`, `parse_detect_intent_json`,
...) can be used on their own.

## Storing messages and reading templates

```python
from seedingbot.repositories import MessageRepo, TemplateRepo

messages = MessageRepo(connection)                 # paramstyle "format" by default
messages.save_message(chat_message)
history = messages.get_message_history("match-1", 50)

templates = TemplateRepo(connection).find_matching_templates("GOAL", "vi", "hype")
```

`paramstyle` may be `"format"`, `"pyformat"` or `"qmark"`. Query failures
raise `RepositoryError`.

## MQTT delivery

```python
import threading
from seedingbot.mqtt_bus import MqttChatMessage, connect_bridge, connect_publisher

publisher = connect_publisher("tcp://localhost:1883", "seeding-bot-pub")
publisher.publish_bot_message("room-match001", MqttChatMessage(content="GOAL!"))

bridge = connect_bridge("tcp://localhost:1883", "seeding-bot-bridge", route)
bridge.start(threading.Event())   # forwards room/+ messages to route(room_id, payload)
```

Connection, subscription and publish failures raise `MqttError`.

## Metrics

```python
from seedingbot import metrics

metrics.inc("seeding_events_total", {"type": "GOAL"})
print(metrics.snapshot())
```

`metrics.wsgi_app` serves the same snapshot to any WSGI server.

## Retrying a call

```python
from seedingbot.retry import retry

result = retry(send_once, max_retries=3, initial_delay=1.0)
```

If every attempt fails, `RetryError` is raised and the last error is kept as
its cause.

## What this package does not do

- It has no command and no running service: nothing here consumes the match
  feed, runs an HTTP or WebSocket server, or wires the pieces together.
- It has no Redis-backed state. The `ContextStore`, `DedupService`,
  `PersonaStateService`, `QualityStateService`, `AutoScalerService`,
  `KillSwitchService` and `RateLimitService` protocols in `seedingbot.ports`
  have no implementation in the package.
- It makes no HTTP calls to a model server; `VLLMGateway` uses the client you
  give it.
- It ships no database driver; the repositories use the connection you give them.

## Running the tests

The `test` extra installs pytest. Run `pytest` from the project root.