# xorcast

xorcast sends the contents of a text file, one character at a time, from any
number of emitter processes to any number of receiver processes. The characters
pass through a fixed-size ring buffer held in a shared-memory segment, and each
one is XOR-encrypted with an 8-bit key on the way in and decrypted on the way
out. Every receiver sees every character written after it registered. A slot in
the buffer is freed only once all receivers that were registered when it was
written have read it.

## Installation

```
pip install .
```

POSIX systems only. There are no dependencies beyond the standard library.

## Where the segment lives

The segment is a file named `mem`. It is placed in the directory given by the
environment variable `XORCAST_SHM_DIR` if that is set, otherwise in `/dev/shm`
if it exists, otherwise in the system temporary directory. All four commands
must see the same directory.

## Usage

Run the four commands below, each in its own terminal.

1. Create the shared segment. The arguments are an identifier, a buffer size of
   1 to 256 slots, and the source file, which is read up to 4095 bytes. The
   identifier is required but not used: the segment is always named `mem`.
   Creating it replaces any earlier segment of that name.

   ```
   xorcast-init mem 8 input.txt
   ```

2. Start one or more receivers. The first argument is either `manual`, which
   reads one character each time you press ENTER, or a delay in milliseconds
   between characters. The second argument is the key, an integer taken modulo
   256:

   ```
   xorcast-receive 200 42
   xorcast-receive manual 42
   ```

   Each receiver writes what it decrypts to `output_receptor_<pid>.txt` in the
   current directory. At most 50 receivers can be registered at a time; a
   receiver that finds no free place exits with an error.

3. Start one or more emitters with the same kind of arguments. Emitters share
   the buffer, and each one walks through the source text from its beginning,
   stopping when it reaches the end:

   ```
   xorcast-emit 100 42
   xorcast-emit manual 42
   ```

   Each emitter and receiver prints a line for every character it handles,
   showing its PID, the character, the buffer slot and the time. When no
   receiver is registered, an emitter's characters are written and their slot
   is freed straight away.

4. Start the finalizer and press Ctrl+C when you want to stop:

   ```
   xorcast-finalize
   ```

   The finalizer sets the shutdown flag in the segment, sends SIGTERM to every
   registered receiver and, through `pkill`, to processes whose command line
   matches `xorcast.emitter` or `xorcast-emit`, and waits until each active
   emitter and receiver has confirmed that it finished. It then prints run
   statistics (emitters and receivers connected in total, characters
   transferred, and how many were still active) and removes the segment.

A negative delay is rejected. Arguments that are not numbers are read as 0, as
is a buffer size that is not a number, which is then rejected.

Receivers decrypt correctly only when they use the emitters' key.

## Library use

The commands are thin wrappers over the modules, which can be used directly:

- `xorcast.initializer.initialize(name, buffer_size, source_path)` creates a
  segment and returns a `SharedSegment`; `format_summary` describes it.
- `xorcast.shared.SharedSegment.create` and `SharedSegment.attach` create or
  map a segment; it offers its counters as attributes, `read_entry` /
  `write_entry`, `read_receiver` / `write_receiver`, its semaphores, `close`
  and `unlink`, and works as a context manager.
- `xorcast.emitter.Emitter` (`register`, `emit_one`, `run`, `unregister`) and
  `xorcast.receiver.Receiver` (`register`, `receive_one`, `run`, `unregister`)
  take a segment, a key, a delay, a manual flag, a stop `threading.Event`,
  and input and output streams; a receiver also takes a binary sink.
- `xorcast.finalizer` provides `request_shutdown`, `wait_for_processes`,
  `collect_statistics`, `format_statistics` and `release_resources`.

## Limitations

- The segment name is fixed at `mem`; only one run can exist per segment
  directory at a time.
- Semaphores are counters in the segment guarded by file locks and waited on by
  polling, so this needs a POSIX system with `fcntl`.
- Stopping emitters relies on the `pkill` command being available.

## Running the tests

```
pip install .[test]
pytest
```