"""Transport-independent realtime primitives shared by the socket gateways."""
