# layeredconf

Layered configuration for Python applications. Keys come from several
*sources*: environment variables, an in-memory store and YAML files. A
`Manager` merges them by priority, and a lower number wins. Sources report
changes as events. The manager keeps track of which source owns each key and
passes the events on to the listeners you register.

## Installation

```
pip install layeredconf
```

To run the test suite:

```
pip install "layeredconf[test]"
pytest
```

## Sources

| Source                                  | Name                | Default priority |
|-----------------------------------------|---------------------|------------------|
| `layeredconf.mem_source.MemorySource`   | `MemorySource`      | 1                |
| `layeredconf.env_source.EnvSource`      | `EnvironmentSource` | 3                |
| `layeredconf.file_source.FileSource`    | `FileSource`        | 4                |

Every source has a `priority` attribute that you can change.

- `EnvSource` reads `os.environ` once, when it is created. It stores each
  variable twice: under its own name, and under the same name with every
  `_` replaced by `.`. So `a_b_c` can also be read as `a.b.c`. The source
  is read-only, and it does not report later changes to the environment.
- `MemorySource` is writable. `set` and `delete` report create, update and
  delete events. Both calls block until a handler has been attached with
  `watch()`. `Manager.add_source` attaches that handler for you.
- `FileSource.add_file(path, priority, handler)` accepts a file or a
  directory. A missing path raises `FileNotFoundError`. When `handler` is
  `None`, each file is read as YAML and flattened into dotted keys by
  `layeredconf.file_handler.convert_to_java_props`. If two files define the
  same key, the file with the lower `priority` number wins. Once `watch()`
  has been called, files are reloaded as they change, and the differences
  are reported as events. Deleted files are ignored.

## Putting it together

```python
from layeredconf.manager import Dispatcher, Manager
from layeredconf.env_source import EnvSource
from layeredconf.mem_source import MemorySource
from layeredconf.file_source import FileSource

manager = Manager(Dispatcher())

files = FileSource()
files.add_file("conf/app.yaml", 0, None)
manager.add_source(files)
manager.add_source(EnvSource())
manager.add_source(MemorySource())

print(manager.get_config("server.port"))
manager.set("server.port", 9090)   # the memory source outranks the file
print(manager.configs_with_source_names())
```

`Manager.set` and `Manager.delete` forward the call to every source. Only the
memory source stores the value; the other sources ignore writes.

Other `Manager` methods:

- `configs()` returns every key with the value from the source that owns it.
- `is_key_exist(key)` tells whether any source holds `key`.
- `refresh(name)` reloads the configuration of one source.
- `add_dimension_info(labels)` forwards a label set to every source.
- `cleanup()` cleans up every source.

### Listening for changes

```python
class PortListener:
    def on_event(self, event):
        print(event.key, event.event_type, event.value)

manager.register_listener(PortListener(), r"server\..*")
```

Keys given to `register_listener` are regular expressions, and they are
searched for in each event key. An invalid pattern raises `ConfigError`.

Module listeners are registered with
`register_module_listener(listener, "prefix")`. They implement
`on_module_event(events)`, which receives the batch of events whose keys
start with that prefix. The `unregister_*` methods remove listeners again.

### Reading into objects

`Manager.unmarshal(obj)` fills a dataclass instance in place from the merged
configuration. If you pass a dict instead, it is replaced with every key and
value.

- A field's key is its name converted to snake case by
  `layeredconf.unmarshal.to_snake`.
- A key can be set explicitly with `field(metadata={"yaml": "name"})`.
- `"-"` skips a field.
- `",inline"` collects the sibling keys into a mapping.
- Nested dataclasses become dotted prefixes.

Values are converted to each field's type by
`layeredconf.unmarshal.convert_value`. A failure raises `UnmarshalError`.

### Dumping everything

```python
import sys
manager.marshal(sys.stdout)   # YAML, grouped by source name
```

## Value expansion

String values in YAML files can refer to environment variables:

```yaml
addr: ${IP||127.0.0.1}:${PORT||8080}
env: ${STAGE^^||local}     # upper-cased
name: ${NAME,,||default}   # lower-cased
```

`layeredconf.expand.expand_value_env` performs this expansion directly.

`layeredconf.file_handler.use_file_name_as_key_content_as_value` is an
alternative file handler. It stores the whole raw content of a file under
the file's base name.

## Remote helpers

`layeredconf.remote` holds the building blocks for remote configuration
centres:

- `generate_dimension(service, version, app)` builds strings such as
  `cart@default#1.0.0`.
- `generate_labels(DimensionName.APP, labels)` selects the labels for each
  dimension.
- `Options` and `RefreshMode` describe client settings.

## Running work concurrently

`layeredconf.queue.concurrent(workers, pieces, func)` calls `func(i)` for
every piece on a bounded thread pool. Any exceptions are collected and
raised together as one `ConcurrentError`.

## What this package does not do

The package has no client for remote configuration servers. It never
connects over the network. The remote helpers only build labels, dimensions
and option sets. To use a remote source, write your own `ConfigSource`
subclass. There is also no command-line tool.

## Errors

- Source and manager errors derive from `layeredconf.source.ConfigError`. A
  missing key, for example, raises `KeyNotExistError`.
- Remote helper errors derive from `layeredconf.remote.RemoteError`.
- Unmarshalling raises `layeredconf.unmarshal.UnmarshalError`.
- `concurrent` raises `layeredconf.queue.ConcurrentError`.