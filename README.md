# extkit

Helpers for programs that exchange framed messages over TCP or TLS, plus a
small threaded layer that runs a client connection or a server with many
clients.

## Wire format

Every message starts with an eight-byte header:

| bytes | meaning                                        |
|-------|------------------------------------------------|
| 0–3   | total size of the message, header included (big-endian) |
| 4–7   | message id (big-endian)                        |
| 8–    | body                                           |

Sending is raw: `send()` writes exactly the bytes it is given (text is encoded
as UTF-8), so the caller builds the header. Receiving on plain TCP reads one
whole framed message, header included.

`extkit.network.convert_receive_msg()` splits a received frame into a
`PacketMessage` of `size`, `msg_id` and `body` (text, cut at the first NUL
byte). It raises `ValueError` when fewer than eight bytes are given.

```python
from extkit.network import convert_receive_msg

packet = convert_receive_msg(b"\x00\x00\x00\x0d\x00\x00\x00\x07hello")
# PacketMessage(size=13, msg_id=7, body='hello')
```

## Shared socket helpers: `extkit.sockets`

- `SettingsFlag` — `NO_FLAGS`, `ENABLE_LOG`, `ALL_FLAGS`. Logging goes to the
  callback given to an endpoint only while `ENABLE_LOG` is set.
- `SocketBase` — holds the log callback and settings; `log(message)`.
- `ResolveError` — an `OSError` raised when an address cannot be resolved.
- `select_socket(sock, msec)` — `True` once the socket is readable, `False`
  on timeout; a wait of `0` blocks without limit.
- `select_sockets(socks, msec)` — index of the first readable socket, or
  `None` on timeout; `ValueError` for an empty list.
- `timeval_from_msec(msec)` — `(seconds, microseconds)`.

## Plain TCP

`extkit.tcp_client.TcpClient(logger=None, settings=ALL_FLAGS)`:

- `connect(server, port)` connects over IPv4 (closing any earlier
  connection). Raises `ResolveError` or `ConnectionError`.
- `send(data)`, `receive(size, read_fully=True)` — `receive` returns one
  framed message; the header's size bounds the read, and `size` is used when
  the header says 0. An empty result means the peer closed.
- `disconnect()`, `fileno()`, the `connected` property,
  `set_rcv_timeout(msec)` and `set_snd_timeout(msec)`.
- Usable as a context manager.

`extkit.tcp_server.TcpServer(logger=None, port=0, settings=ALL_FLAGS)`
listens on every local IPv4 address:

- `listen(msec=None)` accepts one client and returns its socket. With `msec`
  it waits at most that long and raises `TimeoutError`; `port` gives the
  bound port once listening has begun.
- `receive(client, size, read_fully=True)`, `send(client, data)`,
  `disconnect(client)`, `set_rcv_timeout(client, msec)`,
  `set_snd_timeout(client, msec)`, `close()`; usable as a context manager.

```python
from extkit.tcp_client import TcpClient

body = b"hello"
frame = (8 + len(body)).to_bytes(4, "big") + (1).to_bytes(4, "big") + body

with TcpClient(print) as client:
    client.connect("127.0.0.1", 9000)
    client.send(frame)
    reply = client.receive(1024)
```

## TLS

`extkit.secure_socket` holds what both TLS sides share:
`OpenSSLProtocol` (`TLS`, `SSL_V23`, `TLS_V1`), `SecureSocketBase` with
`ca_file`, `cert_file` and `key_file` attributes plus `client_context()` and
`server_context()`, and `ssl_error_string(code)` for OpenSSL `SSL_ERROR_*`
codes. Peer certificates and host names are not verified.

`extkit.tls_client.TlsClient` and `extkit.tls_server.TlsServer` mirror the
TCP classes (`connect`/`listen`, `send`, `receive`, `disconnect`, timeouts,
`close` on the server) and add `has_pending()` and `pending_bytes()`. TLS
`receive(size, read_fully=True)` reads up to `size` decrypted bytes and does
not interpret the frame header. A server needs `cert_file` (and `key_file`
when the key is kept apart) set before `listen()`.

## Client/server layer: `extkit.network`

`Network(info)` takes a `NetworkInfo(ip, name, port, type)`; `is_valid()`
requires all four, with `type` a `NetworkType` other than `NONE`.

- As `NetworkType.SERVER`, `connect()` starts a background thread that
  accepts clients, names each with an upper-case UUID (see `clients`) and
  runs a `ServerReceiver` for it. Each received frame is decoded with
  `convert_receive_msg()` and passed through a `ReceiveHandler` to the
  handler set by `set_server_handler(handler)`, called as
  `handler(connection, packet)`. `disconnect(uuid)` drops one client.
- As `NetworkType.CLIENT`, `connect()` opens a `TcpClient`, available as
  `client`; `disconnect()` closes it.
- `disconnect_all()` and `close()` (or `with Network(...)`) shut everything
  down. Calling `connect()` with incomplete info raises `ValueError`.

```python
from extkit.network import Network, NetworkInfo, NetworkType

def on_packet(connection, packet):
    print(packet.msg_id, packet.body)

with Network(NetworkInfo("0.0.0.0", "demo", 9000, NetworkType.SERVER)) as net:
    net.set_server_handler(on_packet)
    net.connect()
    ...
```

## What it does not do

extkit is a library only: it has no command-line program and no ready-made
server to run. In client mode `Network` does not read in the background;
receive through `network.client`. There is no registry of application
components or job dispatch beyond handing received packets to one handler.

## Installing and testing

```
pip install .
pip install ".[test]"
pytest
```