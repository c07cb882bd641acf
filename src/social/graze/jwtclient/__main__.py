from social.graze.jwtclient.app.cli import invoke

if __name__ == "__main__":
    invoke()
