from hls_relay.main import run

# Run the relay
if __name__ == "__main__":
    run()
