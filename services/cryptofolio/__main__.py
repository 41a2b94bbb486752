import uvicorn

from cryptofolio.config import HOST, PORT


def main():
    uvicorn.run("cryptofolio.main:app", host=HOST, port=PORT)


if __name__ == "__main__":
    main()
